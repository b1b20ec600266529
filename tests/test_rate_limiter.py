"""Tests for the daily LLM quota."""

from datetime import datetime, timedelta, timezone

import pytest

from recordfinder.agents.rate_limiter import RateLimiter
from recordfinder.core.config import FinderConfig
from recordfinder.core.store import FinderStore


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def store(tmp_path):
    s = FinderStore("test_quota", data_root=tmp_path)
    yield s
    s.close()


@pytest.fixture()
def clock():
    return FakeClock(datetime(2026, 3, 14, 15, 30, tzinfo=timezone.utc))


def test_limit_of_ten(store):
    limiter = RateLimiter(store, daily_limit=10, warning_threshold=8)
    assert all(limiter.increment_usage() for _ in range(10))
    assert limiter.increment_usage() is False
    status = limiter.get_status()
    assert status.used == 10
    assert status.remaining == 0
    assert status.is_exceeded
    assert not limiter.can_make_request()
    assert status.resets_at > datetime.now(timezone.utc)


def test_fresh_status(store, clock):
    status = RateLimiter(store, daily_limit=5, warning_threshold=4, clock=clock).get_status()
    assert status.used == 0
    assert status.remaining == 5
    assert not status.is_warning
    assert not status.is_exceeded
    assert status.warning_threshold == 4


def test_resets_at_next_utc_midnight(store, clock):
    status = RateLimiter(store, clock=clock).get_status()
    assert status.resets_at == datetime(2026, 3, 15, tzinfo=timezone.utc)


def test_new_day_starts_from_zero(store, clock):
    limiter = RateLimiter(store, daily_limit=2, warning_threshold=1, clock=clock)
    limiter.increment_usage()
    limiter.increment_usage()
    assert not limiter.can_make_request()

    clock.now += timedelta(days=1)
    assert limiter.can_make_request()
    assert limiter.get_status().used == 0


def test_usage_survives_restart(tmp_path, clock):
    first = FinderStore("persist", data_root=tmp_path)
    RateLimiter(first, clock=clock).increment_usage()
    first.close()

    second = FinderStore("persist", data_root=tmp_path)
    assert RateLimiter(second, clock=clock).get_status().used == 1
    second.close()


def test_scopes_are_independent(store, clock):
    a = RateLimiter(store, daily_limit=1, warning_threshold=1, scope="a", clock=clock)
    b = RateLimiter(store, daily_limit=1, warning_threshold=1, scope="b", clock=clock)
    assert a.increment_usage()
    assert b.increment_usage()


def test_reset_usage(store, clock):
    limiter = RateLimiter(store, daily_limit=1, warning_threshold=1, clock=clock)
    limiter.increment_usage()
    limiter.reset_usage()
    assert limiter.can_make_request()


# ── Warning Messages ─────────────────────────────────────────────────


def test_no_warning_below_threshold(store, clock):
    assert RateLimiter(store, daily_limit=10, warning_threshold=8, clock=clock).get_warning_message() is None


def test_warning_at_threshold(store, clock):
    limiter = RateLimiter(store, daily_limit=10, warning_threshold=2, clock=clock)
    limiter.increment_usage()
    limiter.increment_usage()
    message = limiter.get_warning_message()
    assert "2/10" in message
    assert "8 remaining" in message


def test_exceeded_message(store, clock):
    limiter = RateLimiter(store, daily_limit=1, warning_threshold=1, clock=clock)
    limiter.increment_usage()
    assert "used up" in limiter.get_warning_message()


# ── Construction ─────────────────────────────────────────────────────


def test_from_config_scopes_by_model(store):
    config = FinderConfig.model_validate({
        "region": {"name": "Korea", "search_keyword": "Korea"},
        "llm": {"provider": "openrouter", "model": "meta-llama/llama-3.3-70b:free"},
        "rate_limit": {"daily_limit": 50, "warning_threshold": 40},
    })
    limiter = RateLimiter.from_config(config, store)
    assert limiter.scope == "openrouter:meta-llama/llama-3.3-70b:free"
    assert limiter.daily_limit == 50


def test_invalid_limit(store):
    with pytest.raises(ValueError):
        RateLimiter(store, daily_limit=0)
