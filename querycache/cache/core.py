"""
Core cache data structures.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

FetchFn = Callable[[], Awaitable[Any]]


class Tier(Enum):
    """Classes of queries with different staleness and eviction windows."""
    DEFAULT = "default"     # 5 min fresh, 15 min unused
    SLOW = "slow"           # 10 min fresh, 30 min unused
    REALTIME = "realtime"   # 30 s fresh, 2 min unused, polled every 30 s


class EntryStatus(Enum):
    """Lifecycle status of a cache entry."""
    EMPTY = "empty"
    LOADING = "loading"         # first fetch in flight, no data yet
    SUCCESS = "success"
    ERROR = "error"             # terminal failure, no data
    REFRESHING = "refreshing"   # fetch in flight, previous data still served


@dataclass(frozen=True)
class TierPolicy:
    """Resolved timing windows for one entry (all values in seconds)."""
    tier: Tier
    stale_after: float
    evict_after: float
    refresh_interval: Optional[float] = None


@dataclass
class CacheEntry:
    """
    A cached query. Owned by the CacheStore; callers get snapshots.

    data is set only while status is SUCCESS or REFRESHING, last_error only
    while status is ERROR.
    """
    key: str
    key_parts: List[Any]
    policy: TierPolicy
    fetch_fn: Optional[FetchFn] = None
    status: EntryStatus = EntryStatus.EMPTY
    data: Any = None
    last_error: Optional[BaseException] = None
    fetched_at: Optional[float] = None
    retry_count: int = 0
    active_readers: int = 0
    last_released_at: Optional[float] = None
    # Invalidated while a fetch was in flight; that fetch's result is already stale
    refetch_pending: bool = False

    @property
    def has_data(self) -> bool:
        return self.status in (EntryStatus.SUCCESS, EntryStatus.REFRESHING)

    @property
    def is_fetching(self) -> bool:
        return self.status in (EntryStatus.LOADING, EntryStatus.REFRESHING)

    def age_seconds(self, now: float) -> Optional[float]:
        """Seconds since the last successful fetch."""
        if self.fetched_at is None:
            return None
        return now - self.fetched_at


@dataclass(frozen=True)
class QuerySnapshot:
    """
    Point-in-time view of an entry handed to readers.
    """
    key: str
    status: EntryStatus
    data: Any = None
    error: Optional[BaseException] = None
    retry_count: int = 0
    is_stale: bool = True
    age_seconds: Optional[float] = None
    tier: Optional[Tier] = None
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_fetching(self) -> bool:
        return self.status in (EntryStatus.LOADING, EntryStatus.REFRESHING)

    @property
    def last_updated(self) -> Optional[datetime]:
        """Wall-clock time of the last successful fetch, if any."""
        if self.age_seconds is None:
            return None
        return self.taken_at - timedelta(seconds=self.age_seconds)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        last_updated = self.last_updated
        result = {
            "key": self.key,
            "status": self.status.value,
            "lastUpdated": (
                last_updated.isoformat().replace("+00:00", "Z") if last_updated else None
            ),
            "isStale": self.is_stale,
            "retryCount": self.retry_count,
            "error": str(self.error) if self.error else None,
        }
        if self.tier:
            result["_debug"] = {
                "tier": self.tier.value,
                "age": round(self.age_seconds, 1) if self.age_seconds is not None else None,
            }
        return result
