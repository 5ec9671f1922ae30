"""Request lifecycle: cache lookup, rate limiting, dispatch and storage."""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from apicache.cache.compression import CompressionService
from apicache.cache.key_builder import CacheKeyBuilder
from apicache.cache.metrics import CacheMetricsProtocol, NoopCacheMetrics
from apicache.cache.repository import CacheRepository
from apicache.config import ApiCacheConfig
from apicache.exceptions import ApiCacheError, RateLimitExceededError
from apicache.ratelimit.backends import create_rate_limit_backend
from apicache.ratelimit.service import RateLimitService
from apicache.types import ApiResult, ResponseMetadata
from apicache.utils.params import summarize_params

logger = structlog.get_logger()

Dispatch = Callable[[], Awaitable[ApiResult]]
ShouldCache = Callable[[ApiResult], bool]

MAX_ATTRIBUTES_LENGTH = 255


class _AbandonedRequest(Exception):
    """The caller sending a coalesced request was cancelled before it finished."""


class ApiCacheManager:
    """Single entry point for API clients that want cached, rate-limited calls.

    The manager is the only component that talks to both the repository and
    the rate limiter. A request runs through:

    1. key generation
    2. cache lookup (a hit returns immediately, flagged ``is_cached``)
    3. rate limit check (``RateLimitExceededError`` when exhausted)
    4. the caller's network dispatch
    5. attempt increment, whatever the upstream outcome
    6. storage of successful responses

    Example:
        ```python
        manager = ApiCacheManager(repository, rate_limiter, config)
        result = await manager.send_cached_request(
            "openai",
            "chat/completions",
            dispatcher.bind("chat/completions", params, "POST"),
            params=params,
            method="POST",
        )
        ```
    """

    def __init__(
        self,
        repository: CacheRepository,
        rate_limiter: RateLimitService,
        config: Optional[ApiCacheConfig] = None,
        key_builder: Optional[CacheKeyBuilder] = None,
        metrics: Optional[CacheMetricsProtocol] = None,
    ) -> None:
        """Initialize the manager.

        Args:
            repository: Cache repository
            rate_limiter: Rate limit service
            config: Cache configuration (defaults to the repository's)
            key_builder: Cache key builder
            metrics: Metrics sink
        """
        self.repository = repository
        self.rate_limiter = rate_limiter
        self.config = config or repository.config
        self.key_builder = key_builder or CacheKeyBuilder()
        self.metrics = metrics or NoopCacheMetrics()
        self._in_flight: dict[str, asyncio.Future] = {}

    def get_cache_repository(self) -> CacheRepository:
        return self.repository

    def get_table_name(self, client: str) -> str:
        return self.repository.get_table_name(client)

    async def allow_request(self, client: str) -> bool:
        allowed = await self.rate_limiter.allow_request(client)
        logger.debug("rate_limit_check", client=client, allowed=allowed)
        return allowed

    async def get_remaining_attempts(self, client: str) -> int:
        return await self.rate_limiter.get_remaining_attempts(client)

    async def get_available_in(self, client: str) -> int:
        return await self.rate_limiter.get_available_in(client)

    async def increment_attempts(self, client: str, amount: int = 1) -> None:
        await self.rate_limiter.increment_attempts(client, amount)
        logger.debug("rate_limit_attempts_incremented", client=client, amount=amount)

    async def clear_rate_limit(self, client: str) -> None:
        await self.rate_limiter.clear(client)

    async def clear_table(self, client: str) -> int:
        return await self.repository.clear_table(client)

    def generate_cache_key(
        self,
        client: str,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
        method: str = "GET",
        version: Optional[str] = None,
    ) -> str:
        """Generate a deterministic cache key.

        Format: ``{client}.{method}.{endpoint}.{params_sha1}[.{version}]``

        Raises:
            InvalidIdentifierError: If the client name is invalid
            EncodingError: If the parameters cannot be JSON encoded
        """
        return self.key_builder.build(client, endpoint, params, method, version)

    async def get_cached_response(
        self,
        client: str,
        key: str,
        params: Optional[dict[str, Any]] = None,
    ) -> Optional[ApiResult]:
        """Get a cached response shaped like a fresh one.

        Returns:
            ApiResult with ``is_cached=True``, or None on a miss
        """
        cached = await self.repository.get(client, key)
        if cached is None:
            return None
        return cached.to_api_result(params)

    async def store_response(
        self,
        client: str,
        key: str,
        params: Optional[dict[str, Any]],
        api_result: ApiResult,
        endpoint: str,
        version: Optional[str] = None,
        ttl: Optional[int] = None,
        attributes: Optional[str] = None,
        credits: Optional[int] = None,
    ) -> None:
        """Cache an API response.

        Args:
            client: Client identifier
            key: Cache key
            params: Request parameters (summarized for auditing)
            api_result: Upstream result
            endpoint: API endpoint
            version: API version
            ttl: Seconds to keep the entry; defaults to the client's ``cache_ttl``
            attributes: Free-form attributes stored with the response
            credits: Credits used by the request

        Raises:
            MissingRequiredFieldError: If the response has no body
        """
        if ttl is None:
            ttl = self.config.client(client).cache_ttl

        metadata = ResponseMetadata(
            endpoint=endpoint,
            version=version,
            base_url=api_result.base_url,
            full_url=api_result.full_url,
            method=api_result.method,
            attributes=attributes if attributes is not None else api_result.attributes,
            credits=credits if credits is not None else api_result.credits,
            cost=api_result.cost,
            request_params_summary=summarize_params(params or {}),
            request_headers=api_result.request_headers,
            request_body=api_result.request_body,
            response_headers=api_result.headers,
            response_body=api_result.body,
            response_status_code=api_result.status_code,
            response_time=api_result.response_time,
        )

        await self.repository.store(client, key, metadata, ttl)
        self.metrics.write(client=client, endpoint=endpoint)
        logger.debug("api_response_stored", client=client, key=key, ttl=ttl)

    async def send_cached_request(
        self,
        client: str,
        endpoint: str,
        dispatch: Dispatch,
        params: Optional[dict[str, Any]] = None,
        method: str = "GET",
        version: Optional[str] = None,
        attributes: Optional[str] = None,
        amount: int = 1,
        use_cache: bool = True,
        should_cache: Optional[ShouldCache] = None,
    ) -> ApiResult:
        """Serve a request from cache or dispatch it under the rate limit.

        Concurrent calls for the same key inside this process share one
        dispatch: the first caller sends the request and the others await it.
        If that caller is cancelled, one of the waiters sends the request
        instead.

        Args:
            client: Client identifier
            endpoint: API endpoint
            dispatch: Coroutine factory performing the network call
            params: Request parameters
            method: HTTP method
            version: API version (defaults to the client's configured version)
            attributes: Attributes stored with the response (cut to 255 chars)
            amount: Attempts consumed by the call
            use_cache: Skip cache lookup and storage when False
            should_cache: Extra predicate deciding whether a 2xx is cached

        Returns:
            The cached or fresh ApiResult

        Raises:
            RateLimitExceededError: If the client has no attempts left
        """
        params = params or {}
        if version is None:
            version = self.config.client(client).version

        key = self.generate_cache_key(client, endpoint, params, method, version)
        log = logger.bind(client=client, endpoint=endpoint, method=method, cache_key=key)

        if not use_cache:
            log.debug("cache_disabled_for_request")
            return await self._dispatch(client, key, endpoint, dispatch, params, version, attributes, amount, use_cache, should_cache)

        cached = await self.get_cached_response(client, key, params)
        if cached is not None:
            self.metrics.hit(client=client, endpoint=endpoint)
            log.debug("cache_used")
            return cached

        self.metrics.miss(client=client, endpoint=endpoint)
        log.debug("cache_not_used")

        pending = self._in_flight.get(key)
        while pending is not None:
            log.debug("request_coalesced")
            try:
                result = await asyncio.shield(pending)
            except _AbandonedRequest:
                # The sending caller was cancelled; the first waiter to wake takes over.
                log.debug("coalesced_request_abandoned")
                pending = self._in_flight.get(key)
                continue
            return result.model_copy(deep=True)

        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            result = await self._dispatch(client, key, endpoint, dispatch, params, version, attributes, amount, use_cache, should_cache)
        except asyncio.CancelledError:
            future.set_exception(_AbandonedRequest(key))
            future.exception()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Marks the exception as retrieved.
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._in_flight.pop(key, None)

    async def _dispatch(
        self,
        client: str,
        key: str,
        endpoint: str,
        dispatch: Dispatch,
        params: dict[str, Any],
        version: Optional[str],
        attributes: Optional[str],
        amount: int,
        use_cache: bool,
        should_cache: Optional[ShouldCache],
    ) -> ApiResult:
        log = logger.bind(client=client, endpoint=endpoint, cache_key=key)

        if not await self.allow_request(client):
            self.metrics.rate_limited(client=client)
            raise RateLimitExceededError(client, await self.get_available_in(client))

        trimmed_attributes = attributes[:MAX_ATTRIBUTES_LENGTH] if attributes is not None else None

        try:
            api_result = await dispatch()
        finally:
            # Attempts are consumed whether or not the upstream call succeeded.
            await self.increment_attempts(client, amount)

        if api_result.attributes is None:
            api_result.attributes = trimmed_attributes
        if api_result.credits is None:
            api_result.credits = amount
        if not api_result.params:
            api_result.params = params

        if not api_result.is_successful:
            log.warning(
                "api_request_failed",
                status_code=api_result.status_code,
                response_headers=api_result.headers,
                response_body=(api_result.body or "")[:2000],
            )
            return api_result

        if not use_cache:
            return api_result

        if should_cache is not None and not should_cache(api_result):
            log.info("cache_rejected", response_body=(api_result.body or "")[:2000])
            return api_result

        try:
            await self.store_response(
                client,
                key,
                params,
                api_result,
                endpoint,
                version,
                attributes=trimmed_attributes,
                credits=amount,
            )
        except (ApiCacheError, SQLAlchemyError) as exc:
            self.metrics.error(client=client, operation="store")
            log.error("cache_store_failed", error=str(exc), error_type=type(exc).__name__)
        else:
            log.debug("cache_stored")

        return api_result


def create_cache_manager(
    config: ApiCacheConfig,
    engine: AsyncEngine,
    metrics: Optional[CacheMetricsProtocol] = None,
) -> ApiCacheManager:
    """Wire a manager from configuration.

    Uses Redis for rate limiting when ``config.redis_url`` is set.

    Args:
        config: Cache configuration
        engine: Async SQLAlchemy engine
        metrics: Metrics sink

    Returns:
        Ready to use ApiCacheManager
    """
    compression = CompressionService(config)
    repository = CacheRepository(engine, compression, config)
    rate_limiter = RateLimitService(create_rate_limit_backend(config.redis_url), config)
    return ApiCacheManager(repository, rate_limiter, config, metrics=metrics)
