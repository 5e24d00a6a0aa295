"""
Tier configuration and the staleness/eviction predicates.
"""
from typing import Any, Dict, Optional, Sequence

from .core import CacheEntry, Tier, TierPolicy


# Tier configuration (in seconds)
TIER_CONFIG: Dict[Tier, Dict[str, Any]] = {
    Tier.DEFAULT: {
        "stale_after": 5 * 60,        # 5 minutes
        "evict_after": 15 * 60,       # 15 minutes unused
    },
    Tier.SLOW: {
        "stale_after": 10 * 60,       # 10 minutes - aggregates change rarely
        "evict_after": 30 * 60,       # 30 minutes unused
    },
    Tier.REALTIME: {
        "stale_after": 30,            # 30 seconds
        "evict_after": 2 * 60,        # 2 minutes unused
        "refresh_interval": 30,       # Polled every 30 seconds
    },
}

# Path fragments of feeds that must stay live
REALTIME_RESOURCES = ("agent-alerts", "notifications", "alerts")

# Project-scoped resources change less often than global lists
SLOW_RESOURCE_PREFIX = "/api/projects/"


def get_policy_for_tier(
    tier: Tier,
    stale_after: Optional[float] = None,
    evict_after: Optional[float] = None,
) -> TierPolicy:
    """
    Resolve the timing windows for a tier.

    Args:
        tier: The tier
        stale_after: Per-call override of the freshness window
        evict_after: Per-call override of the eviction window

    Returns:
        TierPolicy with overrides applied
    """
    config = TIER_CONFIG.get(tier, TIER_CONFIG[Tier.DEFAULT])
    return TierPolicy(
        tier=tier,
        stale_after=stale_after if stale_after is not None else config["stale_after"],
        evict_after=evict_after if evict_after is not None else config["evict_after"],
        refresh_interval=config.get("refresh_interval"),
    )


def is_stale(entry: CacheEntry, policy: TierPolicy, now: float) -> bool:
    """True when the entry has never succeeded or is past its freshness window."""
    if entry.fetched_at is None:
        return True
    return now - entry.fetched_at > policy.stale_after


def is_evictable(entry: CacheEntry, policy: TierPolicy, now: float) -> bool:
    """True when nobody reads the entry and the eviction window has passed."""
    if entry.active_readers > 0 or entry.last_released_at is None:
        return False
    return now - entry.last_released_at > policy.evict_after


def get_tier_for_key(parts: Sequence[Any]) -> Tier:
    """
    Pick a tier from a key's resource path.

    The first element of a key is conventionally the resource path, e.g.
    "/api/projects/12/agent-alerts".
    """
    if not parts or not isinstance(parts[0], str):
        return Tier.DEFAULT

    path = parts[0]
    segments = path.strip("/").split("/")
    if any(resource in segments for resource in REALTIME_RESOURCES):
        return Tier.REALTIME
    if path.startswith(SLOW_RESOURCE_PREFIX):
        return Tier.SLOW
    return Tier.DEFAULT
