"""In-memory cache tiers for registry and metadata lookups."""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from cachetools import LRUCache, TLRUCache

from pocker.config import get_settings
from pocker.utils import get_logger
from pocker.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)

DIGEST_TAGS = "digest-tags"
CDN_ICONS = "cdn-icons"
HUB_REPOSITORY = "hub-repository"
HUB_PRODUCT = "hub-product"
HUB_PAGE = "hub-page"

CDN_FAILURE_TTL_S = 3_600


@dataclass(frozen=True)
class _Entry:
    value: Any
    ttl_s: float


class CacheTier:
    """
    A named cache with lazy expiry on read.

    A tier without a TTL never expires entries; it only drops the least
    recently used ones once ``maxsize`` is reached. An evicted key reads as
    a miss and is looked up again, so eviction costs a request but never
    returns a stale answer. Stored values may be None, which records a
    negative result.
    """

    def __init__(
        self,
        name: str,
        ttl_s: Optional[float] = None,
        maxsize: int = 4096,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize a cache tier.

        Args:
            name: Tier name used in logs and metrics
            ttl_s: Default entry lifetime in seconds, None for permanent
            maxsize: Maximum number of entries
            timer: Clock used for expiry
        """
        self.name = name
        self.ttl_s = ttl_s
        if ttl_s is None:
            self._cache: Any = LRUCache(maxsize=maxsize)
        else:
            self._cache = TLRUCache(maxsize=maxsize, ttu=self._time_to_use, timer=timer)

    @staticmethod
    def _time_to_use(_key: Hashable, entry: _Entry, now: float) -> float:
        return now + entry.ttl_s

    def lookup(self, key: Hashable) -> Tuple[bool, Any]:
        """
        Look up a key.

        Returns:
            (hit, value); value may be None on a cached negative result
        """
        entry = self._cache.get(key)
        metrics = get_metrics_collector()
        if entry is None:
            metrics.record_cache_lookup(self.name, "miss")
            return False, None
        metrics.record_cache_lookup(self.name, "hit")
        logger.debug("Cache hit", extra={"tier": self.name, "key": str(key)})
        return True, entry.value

    def get(self, key: Hashable, default: Any = None) -> Any:
        hit, value = self.lookup(key)
        return value if hit else default

    def set(self, key: Hashable, value: Any, ttl_s: Optional[float] = None) -> None:
        """
        Store a value.

        Args:
            key: Cache key
            value: Value to store, None for a negative result
            ttl_s: Lifetime override for this entry (TTL tiers only)
        """
        lifetime = ttl_s if ttl_s is not None else (self.ttl_s or 0.0)
        self._cache[key] = _Entry(value=value, ttl_s=lifetime)

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._cache


class CacheRegistry:
    """The process-wide set of cache tiers."""

    def __init__(self) -> None:
        settings = get_settings()
        self.tiers: Dict[str, CacheTier] = {
            DIGEST_TAGS: CacheTier(DIGEST_TAGS, ttl_s=None, maxsize=settings.digest_cache_size),
            CDN_ICONS: CacheTier(CDN_ICONS, ttl_s=settings.cdn_icon_ttl_s),
            HUB_REPOSITORY: CacheTier(HUB_REPOSITORY, ttl_s=settings.icon_ttl_s),
            HUB_PRODUCT: CacheTier(HUB_PRODUCT, ttl_s=settings.icon_ttl_s),
            HUB_PAGE: CacheTier(HUB_PAGE, ttl_s=settings.hub_page_ttl_s),
        }

    def tier(self, name: str) -> CacheTier:
        return self.tiers[name]

    def clear(self) -> None:
        for tier in self.tiers.values():
            tier.clear()


_cache_registry: Optional[CacheRegistry] = None


def get_cache_registry() -> CacheRegistry:
    """Get the global cache registry."""
    global _cache_registry
    if _cache_registry is None:
        _cache_registry = CacheRegistry()
    return _cache_registry


def clear_version_cache() -> int:
    """
    Forget every resolved digest-to-tag mapping.

    Returns:
        Number of entries dropped
    """
    tier = get_cache_registry().tier(DIGEST_TAGS)
    dropped = len(tier)
    tier.clear()
    logger.info("Version cache cleared", extra={"entries": dropped})
    return dropped
