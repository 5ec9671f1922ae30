"""Fixed-window attempt counters.

A window opens on the first increment for a key and lasts ``decay_seconds``.
Attempts accumulate until the window ends, then the counter resets in full.
"""

from __future__ import annotations

import math
import time
from typing import Any, Callable, Protocol


class RateLimitBackend(Protocol):
    async def attempts(self, key: str) -> int: ...

    async def increment(self, key: str, decay_seconds: int, amount: int = 1) -> int: ...

    async def remaining(self, key: str, max_attempts: int) -> int: ...

    async def too_many_attempts(self, key: str, max_attempts: int) -> bool: ...

    async def available_in(self, key: str) -> int: ...

    async def clear(self, key: str) -> None: ...


class InMemoryRateLimitBackend:
    """Single-process fixed-window counter.

    Increments never await between reading and writing a window, so they are
    atomic within one event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        # key -> [attempts, window_end]
        self._windows: dict[str, list[float]] = {}

    def _active_window(self, key: str) -> list[float] | None:
        window = self._windows.get(key)
        if window is None:
            return None
        if window[1] <= self._clock():
            del self._windows[key]
            return None
        return window

    async def attempts(self, key: str) -> int:
        window = self._active_window(key)
        return int(window[0]) if window else 0

    async def increment(self, key: str, decay_seconds: int, amount: int = 1) -> int:
        window = self._active_window(key)
        if window is None:
            window = [0, self._clock() + decay_seconds]
            self._windows[key] = window
        window[0] += amount
        return int(window[0])

    async def remaining(self, key: str, max_attempts: int) -> int:
        return max(0, max_attempts - await self.attempts(key))

    async def too_many_attempts(self, key: str, max_attempts: int) -> bool:
        return await self.attempts(key) >= max_attempts

    async def available_in(self, key: str) -> int:
        window = self._active_window(key)
        if window is None:
            return 0
        return max(0, math.ceil(window[1] - self._clock()))

    async def clear(self, key: str) -> None:
        self._windows.pop(key, None)


class RedisRateLimitBackend:
    """Redis fixed-window counter shared across processes.

    The counter lives at ``key`` and the window end (unix seconds) at
    ``key:timer``; both expire with the window.
    """

    INCREMENT_SCRIPT = """
local current = redis.call('INCRBY', KEYS[1], ARGV[1])
if current == tonumber(ARGV[1]) then
  redis.call('EXPIRE', KEYS[1], ARGV[2])
  redis.call('SET', KEYS[2], ARGV[3], 'EX', ARGV[2])
end
return current
"""

    def __init__(self, redis_client: Any, clock: Callable[[], float] = time.time) -> None:
        self.redis = redis_client
        self._clock = clock

    @staticmethod
    def _timer_key(key: str) -> str:
        return f"{key}:timer"

    async def attempts(self, key: str) -> int:
        value = await self.redis.get(key)
        return int(value) if value is not None else 0

    async def increment(self, key: str, decay_seconds: int, amount: int = 1) -> int:
        # The caller that opens the window sets both TTLs inside the script.
        window_end = int(self._clock()) + int(decay_seconds)
        current = await self.redis.eval(
            self.INCREMENT_SCRIPT,
            2,
            key,
            self._timer_key(key),
            str(int(amount)),
            str(int(decay_seconds)),
            str(window_end),
        )
        return int(current)

    async def remaining(self, key: str, max_attempts: int) -> int:
        return max(0, max_attempts - await self.attempts(key))

    async def too_many_attempts(self, key: str, max_attempts: int) -> bool:
        if await self.attempts(key) < max_attempts:
            return False
        if await self.redis.exists(self._timer_key(key)):
            return True
        await self.clear(key)
        return False

    async def available_in(self, key: str) -> int:
        value = await self.redis.get(self._timer_key(key))
        if value is None:
            return 0
        return max(0, int(value) - int(self._clock()))

    async def clear(self, key: str) -> None:
        await self.redis.delete(key, self._timer_key(key))


def create_rate_limit_backend(redis_url: str | None = None) -> RateLimitBackend:
    """Redis-backed counter when ``redis_url`` is set, in-memory otherwise."""
    if redis_url:
        from redis.asyncio import Redis

        return RedisRateLimitBackend(Redis.from_url(redis_url, decode_responses=True))
    return InMemoryRateLimitBackend()
