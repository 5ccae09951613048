"""Fixed-window limiter behaviour with a controllable clock."""

import asyncio

import pytest

from projectchat.core.config import Settings
from projectchat.core.errors import RateLimited
from projectchat.services import rate_limiter
from projectchat.services.rate_limiter import (
    FixedWindowCounter,
    RouteRateLimit,
    SocketRateLimiter,
    run_sweeper,
)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_allows_up_to_limit_then_denies():
    clock = FakeClock()
    counter = FixedWindowCounter(3, 60, clock=clock)

    assert [counter.allow("u1") for _ in range(3)] == [True, True, True]
    assert counter.allow("u1") is False
    assert counter.allow("u1") is False


def test_keys_are_independent():
    counter = FixedWindowCounter(1, 60, clock=FakeClock())

    assert counter.allow("u1") is True
    assert counter.allow("u1") is False
    assert counter.allow("u2") is True


def test_fresh_window_after_reset_time():
    clock = FakeClock()
    counter = FixedWindowCounter(2, 60, clock=clock)
    counter.allow("u1")
    counter.allow("u1")
    assert counter.allow("u1") is False

    clock.advance(59.9)
    assert counter.allow("u1") is False

    clock.advance(0.1)
    assert counter.allow("u1") is True
    assert counter.allow("u1") is True
    assert counter.allow("u1") is False


def test_sweep_drops_only_expired_windows():
    clock = FakeClock()
    counter = FixedWindowCounter(5, 60, clock=clock)
    counter.allow("old")
    clock.advance(30)
    counter.allow("new")

    clock.advance(30)
    assert counter.sweep() == 1
    assert len(counter) == 1

    clock.advance(30)
    assert counter.sweep() == 1
    assert len(counter) == 0


def test_reset_clears_everything():
    counter = FixedWindowCounter(1, 60, clock=FakeClock())
    counter.allow("u1")
    counter.reset()
    assert counter.allow("u1") is True


def test_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        FixedWindowCounter(0, 60)


def test_socket_limiter_tracks_are_independent():
    clock = FakeClock()
    limiter = SocketRateLimiter(max_connections=10, max_messages=60, clock=clock)

    assert all(limiter.allow_connection(1) for _ in range(10))
    assert limiter.allow_connection(1) is False
    # Exhausting connections does not touch the message budget
    assert all(limiter.allow_message(1) for _ in range(60))
    assert limiter.allow_message(1) is False

    clock.advance(60)
    assert limiter.allow_message(1) is True
    assert limiter.allow_connection(1) is False

    clock.advance(240)
    assert limiter.allow_connection(1) is True


def test_socket_limiter_sweep_covers_both_tracks():
    clock = FakeClock()
    limiter = SocketRateLimiter(clock=clock)
    limiter.allow_connection(1)
    limiter.allow_message(1)

    clock.advance(300)
    assert limiter.sweep() == 2


def test_route_limit_raises_rate_limited():
    rule = RouteRateLimit("test", 2, 60, "Too many test requests")
    rule.check(1)
    rule.check(1)
    with pytest.raises(RateLimited) as excinfo:
        rule.check(1)
    assert excinfo.value.status_code == 429
    assert excinfo.value.message == "Too many test requests"


async def test_sweeper_runs_until_cancelled():
    clock = FakeClock()
    limiter = SocketRateLimiter(clock=clock)
    limiter.allow_message(1)
    clock.advance(120)

    task = asyncio.create_task(run_sweeper(limiter, 0.01))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(limiter.messages) == 0


def test_route_limit_can_be_disabled(monkeypatch):
    disabled = Settings(rate_limit_enabled=False)
    monkeypatch.setattr(rate_limiter, "get_settings", lambda: disabled)
    rule = RouteRateLimit("test", 1, 60, "Too many test requests")

    for _ in range(5):
        rule.check(1)
