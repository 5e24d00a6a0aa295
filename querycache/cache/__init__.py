"""
Tiered query cache with in-flight deduplication, stale refresh, periodic
polling, retry classification and idle eviction.
"""
from .core import CacheEntry, EntryStatus, QuerySnapshot, Tier, TierPolicy
from .errors import (
    AuthFailure,
    CacheError,
    FailureKind,
    FetchError,
    TransientFailure,
    UnknownKeyError,
    ValidationFailure,
)
from .keys import key_parts, matches_prefix, normalize_key
from .retry import RetryPolicy, classify_failure, should_retry
from .tier_policies import (
    TIER_CONFIG,
    get_policy_for_tier,
    get_tier_for_key,
    is_evictable,
    is_stale,
)
from .coalescer import RequestCoalescer
from .timers import TimerScheduler
from .refresh import RefreshScheduler
from .manager import CacheStore, Subscription
from .query import Query, QueryClient

__all__ = [
    # Core types
    "CacheEntry",
    "EntryStatus",
    "QuerySnapshot",
    "Tier",
    "TierPolicy",
    # Errors
    "AuthFailure",
    "CacheError",
    "FailureKind",
    "FetchError",
    "TransientFailure",
    "UnknownKeyError",
    "ValidationFailure",
    # Keys
    "key_parts",
    "matches_prefix",
    "normalize_key",
    # Retry
    "RetryPolicy",
    "classify_failure",
    "should_retry",
    # Tier policies
    "TIER_CONFIG",
    "get_policy_for_tier",
    "get_tier_for_key",
    "is_evictable",
    "is_stale",
    # Scheduling
    "RequestCoalescer",
    "TimerScheduler",
    "RefreshScheduler",
    # Store and facade
    "CacheStore",
    "Subscription",
    "Query",
    "QueryClient",
]
