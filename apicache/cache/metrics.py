from __future__ import annotations

from typing import Protocol

from prometheus_client import CollectorRegistry, Counter

PROMETHEUS_REGISTRY = CollectorRegistry()


def get_prometheus_registry() -> CollectorRegistry:
    return PROMETHEUS_REGISTRY


api_cache_hit_metric = Counter(
    "api_cache_hit_total",
    "Total cache hits",
    ["client", "endpoint"],
    registry=get_prometheus_registry(),
)

api_cache_miss_metric = Counter(
    "api_cache_miss_total",
    "Total cache misses",
    ["client", "endpoint"],
    registry=get_prometheus_registry(),
)

api_cache_write_metric = Counter(
    "api_cache_write_total",
    "Total cache writes",
    ["client", "endpoint"],
    registry=get_prometheus_registry(),
)

api_cache_error_metric = Counter(
    "api_cache_error_total",
    "Total cache errors",
    ["client", "operation"],
    registry=get_prometheus_registry(),
)

api_cache_rate_limited_metric = Counter(
    "api_cache_rate_limited_total",
    "Total requests refused by the rate limiter",
    ["client"],
    registry=get_prometheus_registry(),
)


class CacheMetricsProtocol(Protocol):
    def hit(self, *, client: str, endpoint: str) -> None: ...

    def miss(self, *, client: str, endpoint: str) -> None: ...

    def write(self, *, client: str, endpoint: str) -> None: ...

    def error(self, *, client: str, operation: str) -> None: ...

    def rate_limited(self, *, client: str) -> None: ...


class NoopCacheMetrics:
    def hit(self, *, client: str, endpoint: str) -> None:
        return None

    def miss(self, *, client: str, endpoint: str) -> None:
        return None

    def write(self, *, client: str, endpoint: str) -> None:
        return None

    def error(self, *, client: str, operation: str) -> None:
        return None

    def rate_limited(self, *, client: str) -> None:
        return None


class PrometheusCacheMetrics:
    def hit(self, *, client: str, endpoint: str) -> None:
        api_cache_hit_metric.labels(client=client, endpoint=endpoint).inc()

    def miss(self, *, client: str, endpoint: str) -> None:
        api_cache_miss_metric.labels(client=client, endpoint=endpoint).inc()

    def write(self, *, client: str, endpoint: str) -> None:
        api_cache_write_metric.labels(client=client, endpoint=endpoint).inc()

    def error(self, *, client: str, operation: str) -> None:
        api_cache_error_metric.labels(client=client, operation=operation).inc()

    def rate_limited(self, *, client: str) -> None:
        api_cache_rate_limited_metric.labels(client=client).inc()
