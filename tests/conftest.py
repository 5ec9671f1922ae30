from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from apicache.cache.compression import CompressionService
from apicache.cache.manager import ApiCacheManager
from apicache.cache.repository import CacheRepository
from apicache.config import ApiCacheConfig, ClientConfig
from apicache.db.session import create_engine
from apicache.ratelimit.backends import InMemoryRateLimitBackend
from apicache.ratelimit.service import RateLimitService
from apicache.types import ApiResult


class FakeClock:
    """Settable clock serving both unix seconds and aware UTC datetimes."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


class FakeRedis:
    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.store: dict[str, str] = {}
        self.expires: dict[str, float] = {}
        self.eval_calls = 0

    def _purge(self, key: str) -> None:
        expires_at = self.expires.get(key)
        if expires_at is not None and expires_at <= self.clock.time():
            self.store.pop(key, None)
            self.expires.pop(key, None)

    async def get(self, key: str):
        self._purge(key)
        return self.store.get(key)

    async def set(self, key: str, value, ex: int | None = None):
        self.store[key] = str(value)
        if ex is not None:
            self.expires[key] = self.clock.time() + int(ex)
        else:
            self.expires.pop(key, None)
        return True

    async def expire(self, key: str, ttl: int):
        self._purge(key)
        if key not in self.store:
            return False
        self.expires[key] = self.clock.time() + int(ttl)
        return True

    async def exists(self, key: str):
        self._purge(key)
        return 1 if key in self.store else 0

    async def delete(self, *keys: str):
        deleted = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                deleted += 1
            self.expires.pop(key, None)
        return deleted

    async def eval(self, script: str, numkeys: int, *args):
        del script
        self.eval_calls += 1
        keys = [str(item) for item in args[:numkeys]]
        argv = [str(item) for item in args[numkeys:]]
        counter_key, timer_key = keys
        amount, decay, window_end = int(argv[0]), int(argv[1]), argv[2]

        self._purge(counter_key)
        current = int(self.store.get(counter_key, 0)) + amount
        self.store[counter_key] = str(current)
        if current == amount:
            self.expires[counter_key] = self.clock.time() + decay
            await self.set(timer_key, window_end, ex=decay)
        return current


def make_result(status_code: int = 200, body: str | None = '{"ok": true}', **kwargs) -> ApiResult:
    defaults = {
        "base_url": "https://demo.test/api",
        "full_url": "https://demo.test/api/predictions",
        "method": "GET",
        "request_headers": {"accept": ["application/json"]},
        "headers": {"content-type": ["application/json"]},
        "response_time": 0.25,
    }
    defaults.update(kwargs)
    return ApiResult(status_code=status_code, body=body, **defaults)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def config():
    return ApiCacheConfig(
        clients={
            "default": ClientConfig(),
            "demo": ClientConfig(
                base_url="https://demo.test/api",
                version="v1",
                cache_ttl=3600,
                rate_limit_max_attempts=5,
                rate_limit_decay_seconds=60,
            ),
            "demo-compressed": ClientConfig(
                base_url="https://demo.test/api",
                version="v1",
                cache_ttl=3600,
                compression_enabled=True,
                rate_limit_max_attempts=5,
                rate_limit_decay_seconds=60,
            ),
            "acme": ClientConfig(
                rate_limit_max_attempts=2,
                rate_limit_decay_seconds=60,
            ),
        }
    )


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'api_cache.db'}")
    yield engine
    await engine.dispose()


@pytest.fixture
async def repository(engine, config, clock):
    repository = CacheRepository(engine, CompressionService(config), config, clock=clock.now)
    for client in ("demo", "demo-compressed", "acme"):
        await repository.create_tables(client)
    return repository


@pytest.fixture
def rate_limiter(config, clock):
    return RateLimitService(InMemoryRateLimitBackend(clock=clock.time), config)


@pytest.fixture
def manager(repository, rate_limiter, config):
    return ApiCacheManager(repository, rate_limiter, config)


@pytest.fixture
def api_result():
    return make_result
