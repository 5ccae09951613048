"""In-process fixed-window rate limiting.

Socket connections and socket messages are limited per user on independent
tracks. REST routes reuse the same counter through ``RouteRateLimit``.

A window starts on the first hit, counts up to ``max_hits`` and is replaced
wholesale once ``reset_at`` has passed. Bursts straddling a window boundary
are tolerated: this is an abuse backstop, not a fairness guarantee.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import zlib
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from functools import lru_cache

from projectchat.core.config import get_settings
from projectchat.core.errors import RateLimited

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class Window:
    count: int
    reset_at: float


class FixedWindowCounter:
    """Keyed fixed-window counter, sharded with one lock per shard."""

    def __init__(
        self,
        max_hits: int,
        window_seconds: float,
        *,
        shards: int = 16,
        clock: Clock = time.monotonic,
    ) -> None:
        if max_hits < 1:
            raise ValueError("max_hits must be at least 1")
        self.max_hits = max_hits
        self.window_seconds = window_seconds
        self._clock = clock
        self._shards: list[dict[Hashable, Window]] = [{} for _ in range(shards)]
        self._locks = [threading.Lock() for _ in range(shards)]

    def _shard(self, key: Hashable) -> int:
        return zlib.crc32(repr(key).encode()) % len(self._shards)

    def allow(self, key: Hashable) -> bool:
        idx = self._shard(key)
        with self._locks[idx]:
            windows = self._shards[idx]
            now = self._clock()
            window = windows.get(key)
            if window is None or now >= window.reset_at:
                windows[key] = Window(count=1, reset_at=now + self.window_seconds)
                return True
            if window.count < self.max_hits:
                window.count += 1
                return True
            return False

    def sweep(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        removed = 0
        now = self._clock()
        for windows, lock in zip(self._shards, self._locks):
            with lock:
                expired = [k for k, w in windows.items() if w.reset_at <= now]
                for key in expired:
                    del windows[key]
                removed += len(expired)
        return removed

    def reset(self) -> None:
        for windows, lock in zip(self._shards, self._locks):
            with lock:
                windows.clear()

    def __len__(self) -> int:
        return sum(len(w) for w in self._shards)


class SocketRateLimiter:
    """Per-user limits for new socket connections and sent messages."""

    def __init__(
        self,
        *,
        max_connections: int = 10,
        connection_window: float = 5 * 60,
        max_messages: int = 60,
        message_window: float = 60,
        clock: Clock = time.monotonic,
    ) -> None:
        self.connections = FixedWindowCounter(max_connections, connection_window, clock=clock)
        self.messages = FixedWindowCounter(max_messages, message_window, clock=clock)

    def allow_connection(self, user_id: Hashable) -> bool:
        return self.connections.allow(user_id)

    def allow_message(self, user_id: Hashable) -> bool:
        return self.messages.allow(user_id)

    def sweep(self) -> int:
        return self.connections.sweep() + self.messages.sweep()


async def run_sweeper(limiter: SocketRateLimiter, interval: float) -> None:
    """Sweep expired windows every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = limiter.sweep()
        except Exception:
            logger.exception("Rate limiter sweep failed")
            continue
        if removed:
            logger.debug("Rate limiter sweep removed %d windows", removed)


@lru_cache
def get_socket_limiter() -> SocketRateLimiter:
    settings = get_settings()
    return SocketRateLimiter(
        max_connections=settings.connection_limit,
        connection_window=settings.connection_window_seconds,
        max_messages=settings.message_limit,
        message_window=settings.message_window_seconds,
    )


# ── REST route limits ─────────────────────────────────────────

_route_limits: list[RouteRateLimit] = []


class RouteRateLimit:
    """Limit for one REST route family, keyed by caller."""

    def __init__(self, name: str, max_hits: int, window_seconds: float, message: str) -> None:
        self.name = name
        self.message = message
        self.counter = FixedWindowCounter(max_hits, window_seconds)
        _route_limits.append(self)

    def check(self, key: Hashable) -> None:
        if not get_settings().rate_limit_enabled:
            return
        if not self.counter.allow(key):
            raise RateLimited(self.message)


def reset_route_limits() -> None:
    for limit in _route_limits:
        limit.counter.reset()


general_limit = RouteRateLimit(
    "general", 100, 15 * 60, "Too many requests, please try again later"
)
create_chat_limit = RouteRateLimit(
    "create_chat", 5, 5 * 60, "Too many chat creation requests, please try again later"
)
send_message_limit = RouteRateLimit(
    "send_message", 30, 60, "Too many message requests, please try again later"
)
get_chat_limit = RouteRateLimit(
    "get_chat", 60, 60, "Too many chat fetch requests, please try again later"
)
get_messages_limit = RouteRateLimit(
    "get_messages", 30, 60, "Too many message history requests, please try again later"
)
export_limit = RouteRateLimit(
    "export", 3, 15 * 60, "Too many export requests, please try again later"
)
update_limit = RouteRateLimit(
    "update", 20, 5 * 60, "Too many update requests, please try again later"
)
delete_limit = RouteRateLimit(
    "delete", 10, 10 * 60, "Too many delete requests, please try again later"
)
