"""Unit tests for cache tiers and deadlines."""

from pocker.utils.cache import (
    CDN_ICONS,
    DIGEST_TAGS,
    CacheRegistry,
    CacheTier,
    clear_version_cache,
    get_cache_registry,
)
from pocker.utils.deadline import Deadline


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_ttl_tier_expires_entries():
    """Test that entries expire after the tier TTL."""
    clock = FakeClock()
    tier = CacheTier("test", ttl_s=10, timer=clock)
    tier.set("key", "value")

    assert tier.lookup("key") == (True, "value")
    clock.advance(11)
    assert tier.lookup("key") == (False, None)


def test_per_entry_ttl_override():
    """Test that one entry can live shorter than the tier default."""
    clock = FakeClock()
    tier = CacheTier("test", ttl_s=100, timer=clock)
    tier.set("short", None, ttl_s=5)
    tier.set("long", "kept")

    clock.advance(6)
    assert tier.lookup("short") == (False, None)
    assert tier.get("long") == "kept"


def test_negative_results_are_hits():
    """Test that a cached None is distinguishable from a miss."""
    tier = CacheTier("test", ttl_s=None)
    tier.set("known-missing", None)

    assert tier.lookup("known-missing") == (True, None)
    assert tier.lookup("never-seen") == (False, None)
    assert "known-missing" in tier


def test_permanent_tier_never_expires():
    """Test that the digest tier has no TTL."""
    registry = get_cache_registry()
    tier = registry.tier(DIGEST_TAGS)
    assert tier.ttl_s is None

    tier.set(("docker.io/library/nginx", "abc"), "1.25.3")
    assert tier.get(("docker.io/library/nginx", "abc")) == "1.25.3"


def test_clear_version_cache_only_clears_digests():
    """Test that clearing versions leaves metadata tiers alone."""
    registry = get_cache_registry()
    registry.tier(DIGEST_TAGS).set("a", "1.0.0")
    registry.tier(DIGEST_TAGS).set("b", None)
    registry.tier(CDN_ICONS).set("https://cdn/icon.svg", "https://cdn/icon.svg")

    assert clear_version_cache() == 2
    assert len(registry.tier(DIGEST_TAGS)) == 0
    assert len(registry.tier(CDN_ICONS)) == 1


def test_deadline_remaining_and_expiry():
    """Test remaining time and expiry."""
    clock = FakeClock()
    deadline = Deadline.after(5, clock=clock)

    assert deadline.remaining() == 5
    clock.advance(3)
    assert deadline.remaining() == 2
    assert not deadline.expired
    clock.advance(3)
    assert deadline.remaining() == 0
    assert deadline.expired


def test_deadline_limit_never_extends():
    """Test that nested limits stay within the outer deadline."""
    clock = FakeClock()
    outer = Deadline.after(10, clock=clock)

    assert outer.limit(3).remaining() == 3
    assert outer.limit(30).remaining() == 10
    clock.advance(8)
    assert outer.limit(5).remaining() == 2


def test_permanent_tier_eviction_reads_as_miss():
    """Test that a full permanent tier drops its oldest entry as a plain miss."""
    tier = CacheTier(DIGEST_TAGS, ttl_s=None, maxsize=2)
    tier.set("a", "1.0.0")
    tier.set("b", "2.0.0")
    assert tier.get("a") == "1.0.0"

    tier.set("c", None)

    assert tier.lookup("b") == (False, None)
    assert tier.lookup("a") == (True, "1.0.0")
    assert tier.lookup("c") == (True, None)


def test_digest_tier_size_is_configurable(configure):
    """Test the digest tier bound comes from settings."""
    configure(digest_cache_size=3)
    tier = CacheRegistry().tier(DIGEST_TAGS)
    for key in "abcd":
        tier.set(key, key)

    assert len(tier) == 3
