"""Fixed-window rate limiting."""

from apicache.ratelimit.backends import (
    InMemoryRateLimitBackend,
    RateLimitBackend,
    RedisRateLimitBackend,
    create_rate_limit_backend,
)
from apicache.ratelimit.service import UNLIMITED, RateLimitService

__all__ = [
    "InMemoryRateLimitBackend",
    "RateLimitBackend",
    "RateLimitService",
    "RedisRateLimitBackend",
    "UNLIMITED",
    "create_rate_limit_backend",
]
