import pytest

from src.app_shell.rate_limit import RateLimiter
from src.rules.models import RateLimitRule


@pytest.fixture
def limiter(clock):
    return RateLimiter(RateLimitRule(window_seconds=60, max_requests=3), clock)


def test_allows_up_to_limit(limiter):
    assert [limiter.check_ingest("client-a") for _ in range(4)] == [True, True, True, False]


def test_keys_are_independent(limiter):
    for _ in range(3):
        limiter.check_ingest("client-a")
    assert limiter.check_ingest("client-b") is True


def test_window_slides(limiter, clock):
    limiter.check_ingest("client-a")
    clock.advance(seconds=30)
    limiter.check_ingest("client-a")
    limiter.check_ingest("client-a")
    assert limiter.check_ingest("client-a") is False

    clock.advance(seconds=30)
    assert limiter.check_ingest("client-a") is True
    assert limiter.check_ingest("client-a") is False


def test_retry_after(limiter, clock):
    assert limiter.retry_after("ingest:client-a", 60) == 0
    for _ in range(3):
        limiter.check_ingest("client-a")
    clock.advance(seconds=10)
    assert limiter.retry_after("ingest:client-a", 60) == 51


def test_zero_limit_denies():
    limiter = RateLimiter(RateLimitRule(window_seconds=60, max_requests=0))
    assert limiter.check_ingest("client-a") is False


def test_reset(limiter):
    for _ in range(3):
        limiter.check_ingest("client-a")
    limiter.reset()
    assert limiter.check_ingest("client-a") is True
