"""
Cache store: entry lifecycle, in-flight deduplication, retries and eviction.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from config.settings import settings as default_settings

from .coalescer import RequestCoalescer
from .core import CacheEntry, EntryStatus, FetchFn, QuerySnapshot, Tier
from .errors import CacheError, UnknownKeyError
from .keys import key_parts, matches_prefix, normalize_key
from .refresh import RefreshScheduler
from .retry import RetryPolicy
from .tier_policies import get_policy_for_tier, is_evictable, is_stale
from .timers import EVICTION_TIMER, TimerScheduler

logger = logging.getLogger("cache.manager")

Listener = Callable[[QuerySnapshot], None]


class Subscription:
    """
    A live reader of one cache entry.

    Keeps the entry alive until released. The optional listener is called
    with a fresh snapshot on every status/data/error change.
    """

    def __init__(
        self,
        store: "CacheStore",
        descriptor: Any,
        cache_key: str,
        listener: Optional[Listener] = None,
    ):
        self._store = store
        self.descriptor = descriptor
        self.key = cache_key
        self._listener = listener
        self.released = False

    @property
    def snapshot(self) -> QuerySnapshot:
        """Current state without side effects."""
        return self._store.get_snapshot(self.descriptor)

    def read(self) -> QuerySnapshot:
        """Current state; starts a background refresh if the entry is stale."""
        return self._store.read(self)

    async def wait(self) -> QuerySnapshot:
        """Wait for any in-flight fetch to settle and return the outcome."""
        return await self._store.wait(self.descriptor)

    def release(self) -> None:
        self._store.release(self)

    def notify(self, snapshot: QuerySnapshot) -> None:
        if self._listener is not None and not self.released:
            self._listener(snapshot)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self.released else "active"
        return f"<Subscription {self.key} {state}>"


class CacheStore:
    """
    Key-addressed store of cache entries with:
    - One in-flight fetch per key, shared by every reader
    - Tiered staleness windows with background refresh on stale reads
    - Periodic refresh for tiers that define an interval
    - Bounded retries for transient failures
    - Eviction after a tier-defined period without readers
    """

    def __init__(
        self,
        timers: Optional[TimerScheduler] = None,
        retry_policy: Optional[RetryPolicy] = None,
        refetch_on_focus: Optional[bool] = None,
        settings=None,
    ):
        """
        Initialize the store.

        Args:
            timers: Timer service (defaults to the running event loop)
            retry_policy: Attempt ceiling and backoff (defaults from settings)
            refetch_on_focus: Refetch stale active entries on focus regain
            settings: Settings object used for any value not given explicitly
        """
        settings = settings or default_settings
        if refetch_on_focus is None:
            refetch_on_focus = settings.refetch_on_focus

        self._entries: Dict[str, CacheEntry] = {}
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._timers = timers or TimerScheduler()
        self._retry = retry_policy or RetryPolicy.from_settings(settings)
        self._coalescer = RequestCoalescer(clock=self._timers.now)
        self._refresh = RefreshScheduler(
            self._timers,
            lookup=self._entries.get,
            fetch=self._start_fetch,
            refetch_on_focus=refetch_on_focus,
        )

        # Stats tracking
        self._stats = {
            "hits_fresh": 0,
            "hits_stale": 0,
            "misses": 0,
            "fetches": 0,
            "retries": 0,
            "failures": 0,
            "deduplicated": 0,
            "invalidations": 0,
            "evictions": 0,
        }

    def now(self) -> float:
        return self._timers.now()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, key: Any) -> Optional[CacheEntry]:
        """Pure lookup, never fetches."""
        return self._entries.get(normalize_key(key))

    def keys(self) -> List[str]:
        return list(self._entries)

    def get_snapshot(self, key: Any) -> QuerySnapshot:
        """Snapshot of an entry, or an empty one if the key is unknown."""
        cache_key = normalize_key(key)
        entry = self._entries.get(cache_key)
        if entry is None:
            return QuerySnapshot(key=cache_key, status=EntryStatus.EMPTY)
        return self._snapshot_of(entry)

    def snapshots(self) -> List[QuerySnapshot]:
        return [self._snapshot_of(entry) for entry in self._entries.values()]

    def _snapshot_of(self, entry: CacheEntry) -> QuerySnapshot:
        now = self.now()
        return QuerySnapshot(
            key=entry.key,
            status=entry.status,
            data=entry.data,
            error=entry.last_error,
            retry_count=entry.retry_count,
            is_stale=is_stale(entry, entry.policy, now),
            age_seconds=entry.age_seconds(now),
            tier=entry.policy.tier,
        )

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def ensure(
        self,
        key: Any,
        tier: Tier,
        fetch_fn: FetchFn,
        stale_after: Optional[float] = None,
        evict_after: Optional[float] = None,
        listener: Optional[Listener] = None,
    ) -> Subscription:
        """
        Register a reader, creating and fetching the entry as needed.

        A fetch starts when the entry is new or stale. If a fetch for the
        key is already in flight, the reader attaches to it.

        Args:
            key: Key descriptor
            tier: Tier whose windows apply to the entry
            fetch_fn: Async callable producing the data
            stale_after: Per-call override of the freshness window
            evict_after: Per-call override of the eviction window
            listener: Called with a snapshot on every change

        Returns:
            Subscription that must be released when the reader goes away
        """
        entry = self._get_or_create(key, tier, fetch_fn, stale_after, evict_after)

        subscription = Subscription(self, key, entry.key, listener)
        self._subscribers.setdefault(entry.key, []).append(subscription)
        entry.active_readers += 1
        self._timers.cancel(entry.key, EVICTION_TIMER)
        self._refresh.start_interval(entry)

        self._record_read(entry)
        self._refresh.on_read(entry)
        return subscription

    def read(self, subscription: Subscription) -> QuerySnapshot:
        """Snapshot for a live reader; refreshes a stale entry in the background."""
        if subscription.released:
            raise CacheError(f"Subscription for {subscription.key} was released")

        entry = self._entries.get(subscription.key)
        if entry is None:
            return QuerySnapshot(key=subscription.key, status=EntryStatus.EMPTY)

        self._record_read(entry)
        self._refresh.on_read(entry)
        return self._snapshot_of(entry)

    def release(self, subscription: Subscription) -> None:
        """Detach a reader. The last reader out arms the eviction timer."""
        if subscription.released:
            return
        subscription.released = True

        subscribers = self._subscribers.get(subscription.key, [])
        if subscription in subscribers:
            subscribers.remove(subscription)

        entry = self._entries.get(subscription.key)
        if entry is None:
            return

        entry.active_readers = max(0, entry.active_readers - 1)
        if entry.active_readers == 0:
            self._refresh.stop_interval(entry.key)
            self._arm_eviction(entry)

    def prefetch(
        self,
        key: Any,
        tier: Tier,
        fetch_fn: FetchFn,
        stale_after: Optional[float] = None,
        evict_after: Optional[float] = None,
    ) -> Optional["asyncio.Task[QuerySnapshot]"]:
        """
        Warm an entry without registering a reader.

        Returns:
            The fetch task, or None if the entry is fresh already
        """
        entry = self._get_or_create(key, tier, fetch_fn, stale_after, evict_after)
        task = None
        if self._refresh.needs_fetch(entry):
            logger.debug(f"Prefetching {entry.key}")
            task = self._start_fetch(entry)
        if entry.active_readers == 0 and not self._timers.is_scheduled(entry.key, EVICTION_TIMER):
            self._arm_eviction(entry)
        return task

    def _get_or_create(
        self,
        key: Any,
        tier: Tier,
        fetch_fn: FetchFn,
        stale_after: Optional[float],
        evict_after: Optional[float],
    ) -> CacheEntry:
        cache_key = normalize_key(key)
        policy = get_policy_for_tier(tier, stale_after, evict_after)

        entry = self._entries.get(cache_key)
        if entry is None:
            logger.info(f"CACHE MISS: {cache_key} [tier={tier.value}]")
            entry = CacheEntry(
                key=cache_key,
                key_parts=key_parts(key),
                policy=policy,
                fetch_fn=fetch_fn,
            )
            self._entries[cache_key] = entry
        else:
            # Latest registration wins, like a re-rendered view passing new options
            entry.fetch_fn = fetch_fn
            entry.policy = policy
        return entry

    def _record_read(self, entry: CacheEntry) -> None:
        if entry.status in (EntryStatus.EMPTY, EntryStatus.LOADING):
            self._stats["misses"] += 1
        elif is_stale(entry, entry.policy, self.now()):
            self._stats["hits_stale"] += 1
        else:
            self._stats["hits_fresh"] += 1

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _start_fetch(self, entry: CacheEntry) -> "asyncio.Task[QuerySnapshot]":
        """Start a fetch for an entry, or return the one already in flight."""
        existing = self._coalescer.get(entry.key, owner=entry)
        if existing is not None:
            self._stats["deduplicated"] += 1
            return existing

        if entry.fetch_fn is None:
            raise UnknownKeyError(entry.key)

        if entry.has_data:
            entry.status = EntryStatus.REFRESHING
        else:
            entry.status = EntryStatus.LOADING
            entry.data = None
            entry.last_error = None
        self._notify(entry)

        task = self._coalescer.start(
            entry.key, lambda: self._run_fetch(entry), owner=entry
        )
        task.add_done_callback(lambda finished: self._on_fetch_done(entry, finished))
        return task

    async def _run_fetch(self, entry: CacheEntry) -> QuerySnapshot:
        """
        Run the fetch function with retries and record the outcome.

        Failures end up on the entry, never raised to the awaiting readers.
        """
        attempt = 0
        while True:
            attempt += 1
            self._stats["fetches"] += 1
            try:
                data = await entry.fetch_fn()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                entry.retry_count += 1
                if self._retry.should_retry(attempt, exc):
                    delay = self._retry.delay_for(attempt)
                    self._stats["retries"] += 1
                    logger.info(
                        f"Fetch failed for {entry.key}, retrying in {delay:.1f}s "
                        f"(attempt {attempt}): {exc}"
                    )
                    if delay > 0:
                        await self._timers.sleep(delay)
                    continue
                self._record_failure(entry, exc)
                break
            else:
                self._record_success(entry, data)
                break

        return self._snapshot_of(entry)

    def _record_success(self, entry: CacheEntry, data: Any) -> None:
        entry.status = EntryStatus.SUCCESS
        entry.data = data
        entry.last_error = None
        entry.fetched_at = self.now()
        entry.retry_count = 0
        logger.debug(f"Fetch complete: {entry.key}")
        if self._is_current(entry):
            self._notify(entry)

    def _record_failure(self, entry: CacheEntry, exc: BaseException) -> None:
        entry.status = EntryStatus.ERROR
        entry.data = None
        entry.last_error = exc
        self._stats["failures"] += 1
        logger.warning(
            f"Fetch failed for {entry.key} after {entry.retry_count} attempt(s): {exc}"
        )
        if self._is_current(entry):
            self._notify(entry)

    def _on_fetch_done(self, entry: CacheEntry, task: "asyncio.Task[Any]") -> None:
        if task.cancelled() or not self._is_current(entry):
            return

        if entry.refetch_pending:
            entry.refetch_pending = False
            entry.fetched_at = None
            if entry.active_readers > 0:
                logger.debug(f"Refetching {entry.key}, invalidated during fetch")
                self._start_fetch(entry)
                return

        if entry.active_readers == 0:
            # Nobody waited for this result; keep it for a full window
            self._arm_eviction(entry)

    def _is_current(self, entry: CacheEntry) -> bool:
        return self._entries.get(entry.key) is entry

    async def wait(self, key: Any) -> QuerySnapshot:
        """Wait until no fetch is in flight for a key and return its snapshot."""
        cache_key = normalize_key(key)
        while True:
            task = self._coalescer.get(cache_key)
            if task is None:
                if self._coalescer.is_registered(cache_key):
                    # Finished, but its done callbacks have not run yet
                    await asyncio.sleep(0)
                    continue
                break
            await asyncio.wait({task})
        return self.get_snapshot(key)

    async def wait_idle(self) -> None:
        """Wait until no fetch is in flight for any key."""
        await self._coalescer.wait_all()

    # ------------------------------------------------------------------
    # Explicit refresh and invalidation
    # ------------------------------------------------------------------

    def refetch(self, key: Any) -> "asyncio.Task[QuerySnapshot]":
        """
        Fetch now regardless of staleness, clearing any terminal error.

        Raises:
            UnknownKeyError: If the key has never been registered
        """
        entry = self.get(key)
        if entry is None:
            raise UnknownKeyError(normalize_key(key))

        if self._coalescer.is_in_flight(entry.key):
            return self._start_fetch(entry)

        logger.info(f"FORCE REFRESH: {entry.key}")
        entry.retry_count = 0
        self._refresh.restart_interval(entry)
        return self._start_fetch(entry)

    def invalidate(self, key: Any) -> bool:
        """
        Mark an entry stale so the next reader (or current ones) refetch.

        Returns:
            True if the entry exists
        """
        entry = self.get(key)
        if entry is None:
            return False
        self._invalidate_entry(entry)
        return True

    def invalidate_matching(self, prefix: Any) -> int:
        """
        Invalidate every entry whose key starts with the prefix descriptor.

        Returns:
            Number of entries invalidated
        """
        matched = [
            entry for entry in list(self._entries.values())
            if matches_prefix(entry.key_parts, prefix)
        ]
        for entry in matched:
            self._invalidate_entry(entry)
        if matched:
            logger.info(f"Invalidated {len(matched)} entries matching {normalize_key(prefix)}")
        return len(matched)

    def _invalidate_entry(self, entry: CacheEntry) -> None:
        logger.info(f"Invalidated cache: {entry.key}")
        self._stats["invalidations"] += 1
        entry.fetched_at = None

        if entry.status is EntryStatus.ERROR:
            entry.status = EntryStatus.EMPTY
            entry.last_error = None
            entry.retry_count = 0
            self._notify(entry)

        if self._coalescer.is_in_flight(entry.key):
            entry.refetch_pending = True
            return

        self._refresh.restart_interval(entry)
        if entry.active_readers > 0:
            self._start_fetch(entry)

    def on_focus(self) -> int:
        """Forward a focus-regain signal. Returns the number of refetches started."""
        return self._refresh.on_focus(list(self._entries.values()))

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def _arm_eviction(self, entry: CacheEntry) -> None:
        entry.last_released_at = self.now()
        self._timers.schedule(
            entry.key,
            EVICTION_TIMER,
            entry.policy.evict_after,
            lambda: self._on_eviction_timer(entry.key),
        )

    def _on_eviction_timer(self, cache_key: str) -> None:
        entry = self._entries.get(cache_key)
        if entry is None or entry.active_readers > 0:
            return
        if self._coalescer.is_in_flight(cache_key):
            # The fetch re-arms eviction when it completes
            logger.debug(f"Eviction postponed, fetch in flight: {cache_key}")
            return
        self._drop(entry)
        self._stats["evictions"] += 1
        logger.info(f"Evicted unused entry: {cache_key}")

    def sweep(self) -> int:
        """
        Evict every entry whose window has passed, without waiting for timers.

        Returns:
            Number of entries evicted
        """
        now = self.now()
        expired = [
            entry for entry in list(self._entries.values())
            if is_evictable(entry, entry.policy, now)
            and not self._coalescer.is_in_flight(entry.key)
        ]
        for entry in expired:
            self._drop(entry)
        self._stats["evictions"] += len(expired)
        return len(expired)

    def remove(self, key: Any) -> bool:
        """
        Drop an entry immediately, readers or not. A fetch in flight for it
        is cancelled.

        Returns:
            True if entry was found and removed
        """
        entry = self.get(key)
        if entry is None:
            return False
        self._drop(entry)
        logger.info(f"Removed cache entry: {entry.key}")
        return True

    def clear(self) -> int:
        """
        Drop all cache entries.

        Returns:
            Number of entries cleared
        """
        count = len(self._entries)
        for entry in list(self._entries.values()):
            self._drop(entry)
        logger.info(f"Cleared {count} cache entries")
        return count

    def _drop(self, entry: CacheEntry) -> None:
        self._timers.cancel_all(entry.key)
        # A re-created entry must never inherit the dropped entry's fetch
        self._coalescer.detach(entry.key)
        self._entries.pop(entry.key, None)
        self._subscribers.pop(entry.key, None)

    async def close(self) -> None:
        """Cancel timers and in-flight fetches."""
        self._timers.cancel_everything()
        self._coalescer.cancel_all()
        await self._coalescer.wait_all()

    # ------------------------------------------------------------------
    # Notifications and stats
    # ------------------------------------------------------------------

    def _notify(self, entry: CacheEntry) -> None:
        subscribers = self._subscribers.get(entry.key)
        if not subscribers:
            return
        snapshot = self._snapshot_of(entry)
        for subscription in list(subscribers):
            try:
                subscription.notify(snapshot)
            except Exception:
                logger.exception(f"Listener failed for {entry.key}")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_hits = self._stats["hits_fresh"] + self._stats["hits_stale"]
        total_requests = total_hits + self._stats["misses"]
        hit_rate = (total_hits / total_requests * 100) if total_requests > 0 else 0

        statuses: Dict[str, int] = {}
        for entry in self._entries.values():
            statuses[entry.status.value] = statuses.get(entry.status.value, 0) + 1

        return {
            "entries": len(self._entries),
            "active_readers": sum(e.active_readers for e in self._entries.values()),
            "statuses": statuses,
            **self._stats,
            "interval_refreshes": self._refresh.interval_refreshes,
            "hit_rate_percent": round(hit_rate, 1),
            "coalescer": self._coalescer.get_stats(),
            "pending_timers": len(self._timers.pending()),
        }
