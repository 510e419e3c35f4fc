"""
Tests for the identity anonymizer.

Day-scoped hashes must agree within a day and differ across days, and
raw connection data must never leave the call.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from src.core.errors import StoreUnavailableError
from src.core.keys import SALT_PREFIX
from src.core.services.analytics_identity import (
    UNATTRIBUTED,
    ConnectionAttributes,
    DailySaltProvider,
    IdentityConfig,
    IdentityService,
    identity_hash,
    normalize_ip,
    normalize_user_agent,
    returning_key,
    salt_key,
    session_window,
)

NOW = datetime(2026, 1, 14, 12, 0, 0, tzinfo=UTC)
UA = "Mozilla/5.0 (Windows NT 10.0) Chrome/120.0.6099 Safari/537.36"


def attrs(ip: str = "203.0.113.7", ua: str = UA, site: str = "site-1") -> ConnectionAttributes:
    return ConnectionAttributes(ip=ip, user_agent=ua, site_id=site)


class BrokenStore:
    """Store whose every call fails."""

    def get(self, key, *, as_json=False):
        raise StoreUnavailableError("down")

    def set(self, key, value):
        raise StoreUnavailableError("down")

    def set_json(self, key, value):
        raise StoreUnavailableError("down")

    def delete(self, key):
        raise StoreUnavailableError("down")

    def list(self, prefix=None):
        raise StoreUnavailableError("down")


@pytest.fixture
def service(kv_store) -> IdentityService:
    return IdentityService(kv_store)


# --- Normalisation ---


class TestNormalize:
    """IP truncation and UA version collapsing."""

    def test_ipv4_truncated_to_24(self) -> None:
        assert normalize_ip("203.0.113.77") == "203.0.113.0"

    def test_ipv6_truncated_to_64(self) -> None:
        assert normalize_ip("2001:db8:abcd:12:1:2:3:4") == "2001:db8:abcd:12::"

    def test_forwarded_list_uses_first(self) -> None:
        assert normalize_ip("198.51.100.9, 10.0.0.1") == "198.51.100.0"

    def test_garbage_ip(self) -> None:
        assert normalize_ip("not-an-ip") == ""
        assert normalize_ip(None) == ""

    def test_ua_versions_collapsed(self) -> None:
        assert normalize_user_agent("Chrome/120.0.1") == normalize_user_agent("Chrome/121.3.4")
        assert normalize_user_agent("Firefox/118.0") == "firefox/x.x"

    def test_repr_hides_raw_values(self) -> None:
        text = repr(attrs())
        assert "203.0.113.7" not in text
        assert "Chrome" not in text


# --- Hashing ---


class TestHashing:
    """Pure hashing functions."""

    def test_same_salt_same_hash(self) -> None:
        assert identity_hash(attrs(), "salt") == identity_hash(attrs(), "salt")

    def test_same_network_same_hash(self) -> None:
        assert identity_hash(attrs("203.0.113.7"), "s") == identity_hash(attrs("203.0.113.200"), "s")

    def test_different_site_different_hash(self) -> None:
        assert identity_hash(attrs(site="a"), "s") != identity_hash(attrs(site="b"), "s")

    def test_hash_is_truncated_hex(self) -> None:
        digest = identity_hash(attrs(), "s")
        assert len(digest) == 32
        int(digest, 16)

    def test_session_window_boundaries(self) -> None:
        assert session_window(NOW, 30) == session_window(NOW + timedelta(minutes=29), 30)
        assert session_window(NOW, 30) != session_window(NOW + timedelta(minutes=31), 30)

    def test_returning_key_stable_within_bucket(self) -> None:
        day = date(2026, 1, 14)
        assert returning_key(attrs(), "p", day, 30) == returning_key(
            attrs(), "p", day + timedelta(days=1), 30
        )

    def test_returning_key_depends_on_pepper(self) -> None:
        day = date(2026, 1, 14)
        assert returning_key(attrs(), "p1", day, 30) != returning_key(attrs(), "p2", day, 30)


# --- Service ---


class TestIdentityService:
    """IdentityService over a real store."""

    def test_same_day_same_identity(self, service) -> None:
        first = service.anonymize(attrs(), NOW)
        second = service.anonymize(attrs(), NOW + timedelta(hours=3))
        assert first.identity_hash == second.identity_hash
        assert first.attributed is True

    def test_next_day_different_identity(self, service) -> None:
        today = service.anonymize(attrs(), NOW)
        tomorrow = service.anonymize(attrs(), NOW + timedelta(days=1))
        assert today.identity_hash != tomorrow.identity_hash
        assert today.returning_key == tomorrow.returning_key

    def test_session_rotates_with_window(self, service) -> None:
        first = service.anonymize(attrs(), NOW)
        same = service.anonymize(attrs(), NOW + timedelta(minutes=10))
        later = service.anonymize(attrs(), NOW + timedelta(minutes=45))
        assert first.session_id == same.session_id
        assert first.session_id != later.session_id

    def test_configured_window(self, kv_store) -> None:
        service = IdentityService(kv_store, IdentityConfig(session_window_minutes=5))
        assert service.anonymize(attrs(), NOW).session_id != service.anonymize(
            attrs(), NOW + timedelta(minutes=6)
        ).session_id

    def test_salt_shared_through_store(self, kv_store) -> None:
        a = IdentityService(kv_store).anonymize(attrs(), NOW)
        b = IdentityService(kv_store).anonymize(attrs(), NOW)
        assert a.identity_hash == b.identity_hash

    def test_nothing_raw_is_stored(self, kv_store, service) -> None:
        service.anonymize(attrs(), NOW)
        assert kv_store.list() == [salt_key(NOW.date())]
        assert "203.0.113" not in kv_store.get(salt_key(NOW.date()))

    def test_store_failure_is_unattributed(self) -> None:
        identity = IdentityService(BrokenStore()).anonymize(attrs(), NOW)
        assert identity == UNATTRIBUTED
        assert identity.session_id is None


class StaleFirstRead:
    """Store view whose first read of each key misses, as a lagging replica would."""

    def __init__(self, inner):
        self._inner = inner
        self._read: set[str] = set()

    def get(self, key, *, as_json=False):
        if key not in self._read:
            self._read.add(key)
            return None
        return self._inner.get(key, as_json=as_json)

    def set(self, key, value):
        self._inner.set(key, value)

    def list(self, prefix=None):
        return self._inner.list(prefix)

    def delete(self, key):
        self._inner.delete(key)


class TestDailySaltProvider:
    """Salt creation, caching and expiry."""

    def test_salt_created_once(self, kv_store) -> None:
        calls = []

        def generator() -> str:
            calls.append(1)
            return f"salt-{len(calls)}"

        provider = DailySaltProvider(kv_store, generator=generator)
        assert provider.salt_for(NOW.date()) == "salt-1"
        assert provider.salt_for(NOW.date()) == "salt-1"
        assert len(calls) == 1

    def test_existing_salt_wins(self, kv_store) -> None:
        kv_store.set(salt_key(NOW.date()), "from-another-worker")
        provider = DailySaltProvider(kv_store, generator=lambda: "mine")
        assert provider.salt_for(NOW.date()) == "from-another-worker"

    def test_old_salts_purged(self, kv_store) -> None:
        provider = DailySaltProvider(kv_store, retention_days=1)
        day = NOW.date()
        for offset in range(3):
            provider.salt_for(day + timedelta(days=offset))

        assert kv_store.list(SALT_PREFIX) == [
            salt_key(day + timedelta(days=1)),
            salt_key(day + timedelta(days=2)),
        ]

    def test_racing_creators_converge(self, kv_store) -> None:
        day = NOW.date()
        first = DailySaltProvider(kv_store, generator=lambda: "salt-a")
        second = DailySaltProvider(StaleFirstRead(kv_store), generator=lambda: "salt-b")

        assert first.salt_for(day) == "salt-a"
        assert second.salt_for(day) == "salt-b"

        assert first.salt_for(day) == second.salt_for(day) == kv_store.get(salt_key(day))
        assert first.salt_for(day) == "salt-b"

    def test_created_salt_is_reread_before_caching(self, kv_store) -> None:
        day = NOW.date()
        provider = DailySaltProvider(kv_store, generator=lambda: "mine")
        provider.salt_for(day)

        kv_store.set(salt_key(day), "winner")

        assert provider.salt_for(day) == "winner"
        kv_store.set(salt_key(day), "later")
        assert provider.salt_for(day) == "winner"
