"""
IdentityAnonymizer - Day-scoped visitor and session hashing.

Derives unlinkable-across-days identifiers from coarse connection
metadata. Raw IP addresses and user agents only ever exist as call
arguments; nothing here stores or logs them.

Key behaviors:
- IP truncated (IPv4 /24, IPv6 /64) and UA versions collapsed before hashing
- identity = HMAC-SHA256(daily salt, ip|ua|site)
- session = SHA-256(identity|time window)
- Daily salt created lazily per UTC date; only salts already in the store are cached
- Returning-visitor key rotates every `returning_visitor_retention_days`
- Store failures degrade to an unattributed identity, never an error
"""

from __future__ import annotations

import hashlib
import hmac
import ipaddress
import logging
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from threading import Lock

from src.core.errors import StoreUnavailableError
from src.core.keys import SALT_PREFIX, salt_key
from src.core.ports.kv import KeyValueStorePort
from src.rules.models import IdentityRules

logger = logging.getLogger(__name__)

HASH_LENGTH = 32
EPOCH_DAY = date(1970, 1, 1)

_VERSION3 = re.compile(r"\d+\.\d+\.\d+")
_VERSION2 = re.compile(r"\d+\.\d+")


# --- Configuration ---


@dataclass(frozen=True)
class IdentityConfig:
    """Identity anonymizer configuration."""

    pepper: str = "dev-pepper-unsafe"
    session_window_minutes: int = 30
    returning_visitor_retention_days: int = 30
    salt_retention_days: int = 1

    @classmethod
    def from_rules(cls, rules: IdentityRules, pepper: str) -> IdentityConfig:
        return cls(
            pepper=pepper,
            session_window_minutes=rules.session_window_minutes,
            returning_visitor_retention_days=rules.returning_visitor_retention_days,
            salt_retention_days=rules.salt_retention_days,
        )


DEFAULT_CONFIG = IdentityConfig()


# --- Data Models ---


@dataclass(frozen=True)
class ConnectionAttributes:
    """Raw connection metadata. Never persisted, never logged."""

    ip: str
    user_agent: str
    site_id: str

    def __repr__(self) -> str:
        return f"ConnectionAttributes(site_id={self.site_id!r})"


@dataclass(frozen=True)
class Identity:
    """Anonymized identity attached to an event."""

    identity_hash: str | None
    session_id: str | None
    returning_key: str | None
    attributed: bool = True


UNATTRIBUTED = Identity(identity_hash=None, session_id=None, returning_key=None, attributed=False)


# --- Normalisation ---


def normalize_ip(ip: str | None) -> str:
    """
    Reduce an IP address to its network prefix.

    IPv4 keeps the first three octets, IPv6 the first 64 bits.
    Unparsable input normalises to "".
    """
    if not ip:
        return ""
    candidate = ip.split(",")[0].strip()
    try:
        addr = ipaddress.ip_address(candidate)
    except ValueError:
        return ""

    if addr.version == 4:
        net = ipaddress.ip_network(f"{addr}/24", strict=False)
    else:
        net = ipaddress.ip_network(f"{addr}/64", strict=False)
    return str(net.network_address)


def normalize_user_agent(user_agent: str | None) -> str:
    """Lowercase the UA and collapse version numbers."""
    if not user_agent:
        return ""
    collapsed = _VERSION3.sub("X.X.X", user_agent)
    collapsed = _VERSION2.sub("X.X", collapsed)
    return collapsed.strip().lower()


# --- Hashing ---


def generate_salt() -> str:
    return secrets.token_hex(16)


def identity_hash(attrs: ConnectionAttributes, day_salt: str) -> str:
    """Same salt + same coarse attributes always yields the same hash."""
    message = "|".join(
        [normalize_ip(attrs.ip), normalize_user_agent(attrs.user_agent), attrs.site_id]
    )
    digest = hmac.new(day_salt.encode(), message.encode(), hashlib.sha256).hexdigest()
    return digest[:HASH_LENGTH]


def session_window(timestamp: datetime, window_minutes: int) -> int:
    """Index of the coarse time window containing timestamp."""
    return int(timestamp.timestamp() // (window_minutes * 60))


def session_hash(identity: str, window: int) -> str:
    return hashlib.sha256(f"{identity}|{window}".encode()).hexdigest()[:HASH_LENGTH]


def retention_bucket(day: date, retention_days: int) -> int:
    return (day - EPOCH_DAY).days // retention_days


def returning_key(
    attrs: ConnectionAttributes,
    pepper: str,
    day: date,
    retention_days: int,
) -> str:
    """
    Key for the cross-day "seen before" marker.

    Keyed by a long-lived pepper rather than the daily salt, and rotated
    every `retention_days`, so a visitor is linkable across days only
    within one bounded retention bucket.
    """
    bucket = retention_bucket(day, retention_days)
    message = "|".join(
        [
            attrs.site_id,
            normalize_ip(attrs.ip),
            normalize_user_agent(attrs.user_agent),
            str(bucket),
        ]
    )
    digest = hmac.new(pepper.encode(), message.encode(), hashlib.sha256).hexdigest()
    return digest[:HASH_LENGTH]


# --- Daily Salt ---


class DailySaltProvider:
    """
    Read-through provider of the per-UTC-day salt.

    The process cache only avoids repeat reads; the store is the source
    of truth so independent workers agree on a day's salt.
    """

    def __init__(
        self,
        store: KeyValueStorePort,
        retention_days: int = 1,
        generator: Callable[[], str] = generate_salt,
    ) -> None:
        self._store = store
        self._retention_days = retention_days
        self._generator = generator
        self._cache: dict[date, str] = {}
        self._lock = Lock()

    def salt_for(self, day: date) -> str:
        """
        Return the salt for a UTC day, creating it on first use.

        A salt this call created is returned but not cached: a racing
        creator may overwrite it, and the next call adopts whatever the
        store settled on. Only a salt found already stored is cached.
        """
        with self._lock:
            cached = self._cache.get(day)
        if cached is not None:
            return cached

        key = salt_key(day)
        stored = self._store.get(key)
        if stored is None:
            self._store.set(key, self._generator())
            created = self._store.get(key)
            if created is None:
                raise StoreUnavailableError("Salt write was not readable")
            self._purge_expired(day)
            return created

        with self._lock:
            self._cache[day] = stored
            for old in [d for d in self._cache if d < day - timedelta(days=self._retention_days)]:
                del self._cache[old]
        return stored

    def _purge_expired(self, today: date) -> None:
        cutoff = salt_key(today - timedelta(days=self._retention_days))
        for key in self._store.list(SALT_PREFIX):
            if key < cutoff:
                self._store.delete(key)


# --- Identity Service ---


class IdentityService:
    """Turns connection metadata into an anonymized Identity."""

    def __init__(
        self,
        store: KeyValueStorePort,
        config: IdentityConfig | None = None,
        salt_provider: DailySaltProvider | None = None,
    ) -> None:
        self._config = config or DEFAULT_CONFIG
        self._salts = salt_provider or DailySaltProvider(
            store, retention_days=self._config.salt_retention_days
        )

    @property
    def config(self) -> IdentityConfig:
        return self._config

    def anonymize(self, attrs: ConnectionAttributes, timestamp: datetime) -> Identity:
        """
        Derive identity and session hashes for an event.

        Falls back to UNATTRIBUTED when the salt store is unavailable.
        """
        day = timestamp.date()
        try:
            salt = self._salts.salt_for(day)
        except StoreUnavailableError:
            logger.warning("Salt store unavailable; event for site %s unattributed", attrs.site_id)
            return UNATTRIBUTED

        visitor = identity_hash(attrs, salt)
        window = session_window(timestamp, self._config.session_window_minutes)
        return Identity(
            identity_hash=visitor,
            session_id=session_hash(visitor, window),
            returning_key=returning_key(
                attrs,
                self._config.pepper,
                day,
                self._config.returning_visitor_retention_days,
            ),
        )


def create_identity_service(
    store: KeyValueStorePort,
    config: IdentityConfig | None = None,
) -> IdentityService:
    """Create an identity service."""
    return IdentityService(store=store, config=config)
