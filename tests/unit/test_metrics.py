"""Tests for cache metrics."""

from apicache.cache.metrics import (
    NoopCacheMetrics,
    PrometheusCacheMetrics,
    api_cache_hit_metric,
    api_cache_rate_limited_metric,
    get_prometheus_registry,
)


class TestPrometheusCacheMetrics:
    """Test Prometheus counters."""

    def test_hit_counter(self):
        """Test hits increment the labelled counter."""
        counter = api_cache_hit_metric.labels(client="metrics-test", endpoint="p")
        before = counter._value.get()

        PrometheusCacheMetrics().hit(client="metrics-test", endpoint="p")

        assert counter._value.get() == before + 1

    def test_rate_limited_counter(self):
        """Test refusals are counted per client."""
        PrometheusCacheMetrics().rate_limited(client="metrics-test")
        value = get_prometheus_registry().get_sample_value(
            "api_cache_rate_limited_total", {"client": "metrics-test"}
        )
        assert value is not None and value >= 1
        assert api_cache_rate_limited_metric is not None

    def test_noop(self):
        """Test the no-op sink accepts every call."""
        metrics = NoopCacheMetrics()
        metrics.hit(client="c", endpoint="e")
        metrics.miss(client="c", endpoint="e")
        metrics.write(client="c", endpoint="e")
        metrics.error(client="c", operation="store")
        metrics.rate_limited(client="c")
