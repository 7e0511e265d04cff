"""Prometheus metrics collection for Pocker."""

from typing import Optional

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class MetricsCollector:
    """Collects and exposes Prometheus metrics for Pocker operations."""

    def __init__(self):
        """Initialize metrics collector with all metrics."""
        # Counter metrics
        self.host_collections_total = Counter(
            "pocker_host_collections_total",
            "Total number of Docker host collections",
            ["source", "outcome"],
        )

        self.version_resolutions_total = Counter(
            "pocker_version_resolutions_total",
            "Total number of digest-to-tag resolutions",
            ["registry", "outcome"],
        )

        self.metadata_lookups_total = Counter(
            "pocker_metadata_lookups_total",
            "Total number of icon/description provider lookups",
            ["provider", "outcome"],
        )

        self.cache_lookups_total = Counter(
            "pocker_cache_lookups_total",
            "Total number of cache lookups",
            ["tier", "result"],
        )

        # Histogram metrics
        self.host_collection_seconds = Histogram(
            "pocker_host_collection_seconds",
            "Docker host collection duration in seconds",
            ["source"],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
        )

        # Gauge metrics
        self.containers_seen = Gauge(
            "pocker_containers_seen",
            "Number of containers reported by the last collection",
            ["source"],
        )

    def record_host_collection(self, source: str, outcome: str, duration_seconds: float) -> None:
        """
        Record a host collection.

        Args:
            source: Source name
            outcome: 'ok' or a failure classification
            duration_seconds: Time spent on the collection
        """
        self.host_collections_total.labels(source=source, outcome=outcome).inc()
        self.host_collection_seconds.labels(source=source).observe(duration_seconds)

    def record_version_resolution(self, registry: str, outcome: str) -> None:
        """
        Record a digest-to-tag resolution.

        Args:
            registry: Registry host
            outcome: resolved, not_found, error, unsupported or cached
        """
        self.version_resolutions_total.labels(registry=registry, outcome=outcome).inc()

    def record_metadata_lookup(self, provider: str, outcome: str) -> None:
        """
        Record a metadata provider lookup.

        Args:
            provider: Provider tier name
            outcome: hit, miss or error
        """
        self.metadata_lookups_total.labels(provider=provider, outcome=outcome).inc()

    def record_cache_lookup(self, tier: str, result: str) -> None:
        """
        Record a cache lookup.

        Args:
            tier: Cache tier name
            result: hit or miss
        """
        self.cache_lookups_total.labels(tier=tier, result=result).inc()

    def set_containers_seen(self, source: str, count: int) -> None:
        """
        Set the number of containers seen on a source.

        Args:
            source: Source name
            count: Number of containers
        """
        self.containers_seen.labels(source=source).set(count)

    def get_metrics(self) -> bytes:
        """
        Get current metrics in Prometheus format.

        Returns:
            Metrics data in bytes
        """
        return generate_latest()


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """
    Get the global metrics collector instance.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector
