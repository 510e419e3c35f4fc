"""
Engine error taxonomy.

Each error carries a machine code, a client-safe message, an optional
field name, and the HTTP status the API layer renders it with.

Key behaviors:
- ValidationError always names the offending field
- OwnershipError uses one message for "missing" and "not yours"
- StoreUnavailableError is logged by the caller, never shown in detail
"""

from __future__ import annotations


class AnalyticsError(Exception):
    """Base class for engine errors."""

    status_code = 500
    default_code = "error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        field_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.field_name = field_name

    def to_dict(self) -> dict[str, str | None]:
        return {"error": self.message, "code": self.code, "field": self.field_name}


class ValidationError(AnalyticsError):
    """Missing or malformed field, or invalid enum value."""

    status_code = 400
    default_code = "validation_error"


class AuthenticationError(AnalyticsError):
    status_code = 401
    default_code = "unauthenticated"


class OwnershipError(AnalyticsError):
    """Site is not owned by the caller (or does not exist)."""

    status_code = 403
    default_code = "access_denied"

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class NotFoundError(AnalyticsError):
    status_code = 404
    default_code = "not_found"


class RateLimitError(AnalyticsError):
    status_code = 429
    default_code = "rate_limited"

    def __init__(self, retry_after: int, message: str = "Rate limit exceeded") -> None:
        super().__init__(message)
        self.retry_after = retry_after


class StoreUnavailableError(AnalyticsError):
    """The backing key-value store failed."""

    status_code = 500
    default_code = "store_unavailable"
