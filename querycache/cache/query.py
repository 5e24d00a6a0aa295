"""
Query facade: the single entry point views use to read cached data.
"""
import asyncio
from typing import Any, Dict, Optional

from .core import EntryStatus, FetchFn, QuerySnapshot, Tier
from .keys import key_parts
from .manager import CacheStore, Listener, Subscription
from .tier_policies import get_tier_for_key


class Query:
    """
    A caller's live view of one key.

    Usage:
        with client.use_entry(["/api/projects", 12], load_project) as query:
            snapshot = await query.wait()
            ...
            snapshot = query.read()
    """

    def __init__(self, client: "QueryClient", subscription: Subscription):
        self._client = client
        self._subscription = subscription

    @property
    def key(self) -> str:
        return self._subscription.key

    @property
    def snapshot(self) -> QuerySnapshot:
        return self._subscription.snapshot

    @property
    def data(self) -> Any:
        return self.snapshot.data

    @property
    def error(self) -> Optional[BaseException]:
        return self.snapshot.error

    @property
    def status(self) -> EntryStatus:
        return self.snapshot.status

    @property
    def released(self) -> bool:
        return self._subscription.released

    def read(self) -> QuerySnapshot:
        """Current {data, error, status}; refreshes in the background if stale."""
        return self._subscription.read()

    async def wait(self) -> QuerySnapshot:
        return await self._subscription.wait()

    def invalidate(self) -> bool:
        return self._client.invalidate(self._subscription.descriptor)

    async def refetch_now(self) -> QuerySnapshot:
        return await self._client.refetch_now(self._subscription.descriptor)

    def release(self) -> None:
        self._subscription.release()

    def __enter__(self) -> "Query":
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    async def __aenter__(self) -> "Query":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.release()


class QueryClient:
    """
    Composes key normalization, the cache store, tier policies and refresh
    scheduling for callers.

    Construct one per application and pass it to every consumer; tests build
    their own isolated instances.
    """

    def __init__(self, store: Optional[CacheStore] = None, **store_options):
        """
        Args:
            store: Existing store to wrap
            **store_options: Passed to CacheStore when no store is given
        """
        self.store = store or CacheStore(**store_options)

    def use_entry(
        self,
        key: Any,
        fetch_fn: FetchFn,
        tier: Optional[Tier] = None,
        stale_after: Optional[float] = None,
        evict_after: Optional[float] = None,
        listener: Optional[Listener] = None,
    ) -> Query:
        """
        Subscribe to a key, fetching it if absent or stale.

        Args:
            key: Key descriptor, e.g. ["/api/projects", 12, "rfis"]
            fetch_fn: Async callable producing the data
            tier: Tier to apply (inferred from the key's path if omitted)
            stale_after: Override of the tier's freshness window
            evict_after: Override of the tier's eviction window
            listener: Called with a snapshot on every change

        Returns:
            Query that keeps the entry alive until released
        """
        tier = tier or get_tier_for_key(key_parts(key))
        subscription = self.store.ensure(
            key,
            tier,
            fetch_fn,
            stale_after=stale_after,
            evict_after=evict_after,
            listener=listener,
        )
        return Query(self, subscription)

    async def fetch_query(
        self,
        key: Any,
        fetch_fn: FetchFn,
        tier: Optional[Tier] = None,
        stale_after: Optional[float] = None,
        evict_after: Optional[float] = None,
    ) -> Any:
        """
        One-shot read: cached data if fresh, otherwise the fetched data.

        Raises:
            Exception: The terminal failure recorded on the entry
        """
        with self.use_entry(key, fetch_fn, tier, stale_after, evict_after) as query:
            snapshot = await query.wait()
        if snapshot.status is EntryStatus.ERROR:
            raise snapshot.error
        return snapshot.data

    def prefetch(
        self,
        key: Any,
        fetch_fn: FetchFn,
        tier: Optional[Tier] = None,
        stale_after: Optional[float] = None,
        evict_after: Optional[float] = None,
    ) -> Optional["asyncio.Task[QuerySnapshot]"]:
        """Warm a key a view is likely to need soon."""
        tier = tier or get_tier_for_key(key_parts(key))
        return self.store.prefetch(key, tier, fetch_fn, stale_after, evict_after)

    def invalidate(self, key: Any) -> bool:
        return self.store.invalidate(key)

    def invalidate_matching(self, prefix: Any) -> int:
        return self.store.invalidate_matching(prefix)

    async def refetch_now(self, key: Any) -> QuerySnapshot:
        """
        Fetch a key now, bypassing staleness and clearing a terminal error.

        Raises:
            UnknownKeyError: If the key was never registered
        """
        self.store.refetch(key)
        return await self.store.wait(key)

    def get_snapshot(self, key: Any) -> QuerySnapshot:
        return self.store.get_snapshot(key)

    def on_focus(self) -> int:
        return self.store.on_focus()

    def get_stats(self) -> Dict[str, Any]:
        return self.store.get_stats()

    async def close(self) -> None:
        await self.store.close()
