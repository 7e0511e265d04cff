"""Manager modules for business logic."""

from .host_collector import HostCollector, classify_failure, get_host_collector
from .metadata_resolver import MetadataContext, MetadataResolver, get_metadata_resolver
from .version_resolver import DigestVersionResolver, VersionRequest, get_version_resolver
from .stats_manager import StatsManager, get_stats_manager
from .aggregator import AppAggregator, apply_version_backfill, get_aggregator

__all__ = [
    "AppAggregator",
    "DigestVersionResolver",
    "HostCollector",
    "MetadataContext",
    "MetadataResolver",
    "StatsManager",
    "VersionRequest",
    "apply_version_backfill",
    "classify_failure",
    "get_aggregator",
    "get_host_collector",
    "get_metadata_resolver",
    "get_stats_manager",
    "get_version_resolver",
]
