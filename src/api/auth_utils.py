"""
Bearer token helpers for the dashboard API.

Tokens are HS256 JWTs issued by the account layer; the engine only
needs the caller's user id (`sub`) to check site ownership.
"""

import os
from datetime import UTC, datetime, timedelta
from typing import Any, cast

from jose import jwt

SECRET_KEY = os.environ.get("ZTA_SECRET_KEY", "dev-secret-unsafe")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 24 hours


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
    now_utc: datetime | None = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Claims to encode in the token (`sub` is the user id)
        expires_delta: Optional custom expiration delta
        now_utc: Current UTC time (for testing/determinism). Defaults to datetime.now(UTC).
    """
    claims = data.copy()
    issued_at = now_utc if now_utc is not None else datetime.now(UTC)
    lifetime = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    claims.update({"iat": issued_at, "exp": issued_at + lifetime})
    encoded_jwt: str = jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def create_user_token(user_id: str, expires_delta: timedelta | None = None) -> str:
    return create_access_token({"sub": user_id}, expires_delta=expires_delta)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Verified claims, or None for a bad signature, expiry or garbage."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return cast(dict[str, Any], payload)
    except jwt.JWTError:
        return None


def token_user_id(token: str) -> str | None:
    """The `sub` claim of a valid token."""
    payload = decode_access_token(token)
    if not payload:
        return None
    user_id = payload.get("sub")
    return user_id if isinstance(user_id, str) and user_id else None
