"""apicache - Cached, rate-limited access to third-party HTTP APIs."""

__version__ = "0.1.0"

from apicache.cache import (
    ApiCacheManager,
    CacheKeyBuilder,
    CacheRepository,
    CompressionService,
    NoopCacheMetrics,
    PrometheusCacheMetrics,
    create_cache_manager,
)
from apicache.config import ApiCacheConfig, ClientConfig, load_config
from apicache.conversion import (
    CompressionConverter,
    ConversionOptions,
    DecompressionConverter,
)
from apicache.exceptions import (
    ApiCacheError,
    CompressionError,
    DecodingError,
    DepthExceededError,
    EncodingError,
    InvalidIdentifierError,
    MissingRequiredFieldError,
    RateLimitExceededError,
    UnsupportedTypeError,
)
from apicache.http import HttpDispatcher
from apicache.ratelimit import RateLimitService
from apicache.types import ApiResult, CachedResponse, ResponseMetadata

__all__ = [
    # Version
    "__version__",
    # Cache
    "ApiCacheManager",
    "CacheKeyBuilder",
    "CacheRepository",
    "CompressionService",
    "NoopCacheMetrics",
    "PrometheusCacheMetrics",
    "create_cache_manager",
    # Rate limiting
    "RateLimitService",
    # Conversion
    "CompressionConverter",
    "ConversionOptions",
    "DecompressionConverter",
    # HTTP
    "HttpDispatcher",
    # Config
    "ApiCacheConfig",
    "ClientConfig",
    "load_config",
    # Types
    "ApiResult",
    "CachedResponse",
    "ResponseMetadata",
    # Exceptions
    "ApiCacheError",
    "CompressionError",
    "DecodingError",
    "DepthExceededError",
    "EncodingError",
    "InvalidIdentifierError",
    "MissingRequiredFieldError",
    "RateLimitExceededError",
    "UnsupportedTypeError",
]
