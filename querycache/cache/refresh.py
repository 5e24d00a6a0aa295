"""
Background refresh triggers.

A refetch happens when a reader touches an absent or stale entry, and on a
fixed interval for tiers that define one. Focus regain alone does not
refetch unless refetch_on_focus is enabled.
"""
import logging
from typing import Any, Callable, Iterable, Optional

from .core import CacheEntry, EntryStatus
from .tier_policies import is_stale
from .timers import REFRESH_TIMER, TimerScheduler

logger = logging.getLogger("cache.refresh")


class RefreshScheduler:
    """
    Decides when an entry is refetched and asks the store to do it.

    The store passes in:
    - lookup: key -> entry (or None once evicted)
    - fetch: starts a deduplicated fetch for an entry
    """

    def __init__(
        self,
        timers: TimerScheduler,
        lookup: Callable[[str], Optional[CacheEntry]],
        fetch: Callable[[CacheEntry], Any],
        refetch_on_focus: bool = False,
    ):
        self._timers = timers
        self._lookup = lookup
        self._fetch = fetch
        self.refetch_on_focus = refetch_on_focus
        self.interval_refreshes = 0

    def needs_fetch(self, entry: CacheEntry) -> bool:
        """
        Whether a read of this entry should start a fetch.

        Terminal errors are left alone until the caller asks for a refetch.
        """
        if entry.is_fetching or entry.status is EntryStatus.ERROR:
            return False
        if entry.status is EntryStatus.EMPTY:
            return True
        return is_stale(entry, entry.policy, self._timers.now())

    def on_read(self, entry: CacheEntry) -> bool:
        """Start a fetch if the entry is absent or stale. Returns True if one was requested."""
        if not self.needs_fetch(entry):
            return False
        logger.debug(f"Refresh on read: {entry.key} [status={entry.status.value}]")
        self._fetch(entry)
        return True

    def start_interval(self, entry: CacheEntry) -> None:
        """Arm the periodic refresh of an entry, if its tier has one."""
        interval = entry.policy.refresh_interval
        if not interval:
            # The entry may have been re-registered under a tier without polling
            self.stop_interval(entry.key)
            return
        if self._timers.is_scheduled(entry.key, REFRESH_TIMER):
            return
        self._arm(entry.key, interval)

    def restart_interval(self, entry: CacheEntry) -> None:
        """Restart the cadence from now (after an invalidation)."""
        if self._timers.cancel(entry.key, REFRESH_TIMER):
            self.start_interval(entry)

    def stop_interval(self, cache_key: str) -> None:
        self._timers.cancel(cache_key, REFRESH_TIMER)

    def _arm(self, cache_key: str, interval: float) -> None:
        self._timers.schedule(
            cache_key,
            REFRESH_TIMER,
            interval,
            lambda: self._tick(cache_key),
        )

    def _tick(self, cache_key: str) -> None:
        entry = self._lookup(cache_key)
        if entry is None:
            return
        interval = entry.policy.refresh_interval
        if not interval:
            logger.debug(f"Interval refresh dropped, tier no longer polls: {cache_key}")
            return

        # Re-arm first so the cadence does not drift with fetch latency
        self._arm(cache_key, interval)

        if entry.status is EntryStatus.ERROR:
            logger.debug(f"Interval refresh skipped, terminal error: {cache_key}")
            return
        logger.debug(f"Interval refresh: {cache_key}")
        self.interval_refreshes += 1
        self._fetch(entry)

    def on_focus(self, entries: Iterable[CacheEntry]) -> int:
        """
        Handle the application regaining focus.

        Returns:
            Number of refetches started (always 0 unless refetch_on_focus)
        """
        if not self.refetch_on_focus:
            logger.debug("Focus regained, refetch on focus disabled")
            return 0

        started = 0
        for entry in entries:
            if entry.active_readers > 0 and self.on_read(entry):
                started += 1
        logger.info(f"Focus regained, refetching {started} entries")
        return started
