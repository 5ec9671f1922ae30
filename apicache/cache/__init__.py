"""Response cache: keys, compression, storage and the request lifecycle."""

from apicache.cache.compression import CompressionService
from apicache.cache.key_builder import CacheKeyBuilder
from apicache.cache.manager import ApiCacheManager, create_cache_manager
from apicache.cache.metrics import (
    CacheMetricsProtocol,
    NoopCacheMetrics,
    PrometheusCacheMetrics,
)
from apicache.cache.repository import CacheRepository

__all__ = [
    "ApiCacheManager",
    "CacheKeyBuilder",
    "CacheMetricsProtocol",
    "CacheRepository",
    "CompressionService",
    "NoopCacheMetrics",
    "PrometheusCacheMetrics",
    "create_cache_manager",
]
