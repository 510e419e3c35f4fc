import logging
from datetime import UTC, datetime, timedelta

import pytest

from src.adapters.clock import SystemClock
from src.adapters.log_notifier import LoggingGoalNotifier
from src.adapters.site_directory import KVSiteDirectory, site_key
from src.api.auth_utils import (
    create_access_token,
    create_user_token,
    decode_access_token,
    token_user_id,
)
from src.core.errors import ValidationError


class TestSiteDirectory:
    def test_register_and_get(self, kv_store):
        directory = KVSiteDirectory(kv_store)
        directory.register("site-1", "user-1", "example.com")

        site = directory.get_site("site-1")
        assert (site.site_id, site.owner_id, site.domain) == ("site-1", "user-1", "example.com")
        assert kv_store.list() == [site_key("site-1")]

    def test_unknown_site(self, kv_store):
        directory = KVSiteDirectory(kv_store)
        assert directory.get_site("missing") is None
        assert directory.get_site("") is None

    def test_corrupt_record(self, kv_store):
        kv_store.set_json(site_key("site-1"), ["not", "a", "record"])
        assert KVSiteDirectory(kv_store).get_site("site-1") is None

    def test_register_rejects_unsafe_ids(self, kv_store):
        directory = KVSiteDirectory(kv_store)
        for bad in ("", "_salt", "a:b", "has space"):
            with pytest.raises(ValidationError):
                directory.register(bad, "user-1", "example.com")
        assert kv_store.list() == []


class TestLoggingNotifier:
    def test_records_and_logs(self, caplog):
        notifier = LoggingGoalNotifier()
        with caplog.at_level(logging.INFO, logger="src.adapters.log_notifier"):
            notifier.goal_completed("site-1", "g1", "Traffic", 1500)

        assert notifier.sent[0].goal_name == "Traffic"
        assert notifier.sent[0].current_value == 1500
        assert "Goal completed" in caplog.text

        notifier.clear()
        assert notifier.sent == []


class TestAccessTokens:
    def test_round_trip(self):
        token = create_access_token({"sub": "user-1"})
        assert decode_access_token(token)["sub"] == "user-1"

    def test_expired_token(self):
        token = create_access_token(
            {"sub": "user-1"},
            expires_delta=timedelta(minutes=5),
            now_utc=datetime.now(UTC) - timedelta(hours=1),
        )
        assert decode_access_token(token) is None

    def test_garbage_token(self):
        assert decode_access_token("not-a-jwt") is None
        assert token_user_id("not-a-jwt") is None

    def test_user_token_subject(self):
        assert token_user_id(create_user_token("user-7")) == "user-7"

    def test_token_without_subject(self):
        assert token_user_id(create_access_token({"role": "viewer"})) is None


def test_system_clock_is_utc():
    clock = SystemClock()
    now = clock.now_utc()
    assert now.tzinfo is not None
    assert clock.today_utc() in (now.date(), now.date() + timedelta(days=1))
