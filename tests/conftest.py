from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from src.adapters.kv_memory import InMemoryKeyValueStore
from src.rules.loader import load_rules
from src.rules.models import Rules

FIXED_NOW = datetime(2026, 1, 14, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Deterministic clock; satisfies TimePort and the API's clock dependency."""

    def __init__(self, now: datetime = FIXED_NOW):
        self._now = now

    def now_utc(self) -> datetime:
        return self._now

    def today_utc(self):
        return self._now.date()

    def advance(self, **kwargs) -> None:
        self._now = self._now + timedelta(**kwargs)


@pytest.fixture
def project_root() -> Path:
    return Path(__file__).parent.parent


@pytest.fixture
def rules(project_root) -> Rules:
    """Rules loaded from the real rules.yaml at the project root."""
    return load_rules(project_root / "rules.yaml")


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
