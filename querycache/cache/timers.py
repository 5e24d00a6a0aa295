"""
Keyed, cancellable timers for eviction and periodic refresh.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Tuple

logger = logging.getLogger("cache.timers")

EVICTION_TIMER = "evict"
REFRESH_TIMER = "refresh"


class TimerScheduler:
    """
    One pending callback per (cache key, timer name).

    Scheduling a timer that already exists replaces it, so callbacks never
    run against a condition that was cancelled meanwhile. Backed by the
    running event loop; tests override now() and _call_later() to drive
    time by hand. Retry backoff sleeps go through the same clock.
    """

    def __init__(self):
        self._timers: Dict[Tuple[str, str], Any] = {}

    def now(self) -> float:
        """Monotonic clock shared by the store and its policies."""
        return time.monotonic()

    def schedule(
        self,
        cache_key: str,
        name: str,
        delay: float,
        callback: Callable[[], None],
    ) -> None:
        """
        Arm (or re-arm) a timer.

        Args:
            cache_key: Key the timer belongs to
            name: Timer name, e.g. EVICTION_TIMER
            delay: Seconds from now
            callback: Called with no arguments when the timer fires
        """
        self.cancel(cache_key, name)
        slot = (cache_key, name)

        def fire() -> None:
            self._timers.pop(slot, None)
            callback()

        self._timers[slot] = self._call_later(max(0.0, delay), fire)
        logger.debug(f"Armed {name} timer for {cache_key} in {delay:.1f}s")

    def cancel(self, cache_key: str, name: str) -> bool:
        """Disarm a timer. Returns True if one was pending."""
        handle = self._timers.pop((cache_key, name), None)
        if handle is None:
            return False
        self._cancel_handle(handle)
        logger.debug(f"Disarmed {name} timer for {cache_key}")
        return True

    def cancel_all(self, cache_key: str) -> int:
        """Disarm every timer of a key."""
        slots = [slot for slot in self._timers if slot[0] == cache_key]
        for key, name in slots:
            self.cancel(key, name)
        return len(slots)

    def cancel_everything(self) -> int:
        count = len(self._timers)
        for key, name in list(self._timers):
            self.cancel(key, name)
        return count

    async def sleep(self, delay: float) -> None:
        """
        Suspend the caller for delay seconds on this scheduler's clock.

        Not keyed: the sleep belongs to the awaiting task, and cancelling
        that task disarms it.
        """
        waiter = asyncio.get_running_loop().create_future()

        def wake() -> None:
            if not waiter.done():
                waiter.set_result(None)

        handle = self._call_later(max(0.0, delay), wake)
        try:
            await waiter
        finally:
            if waiter.cancelled() or not waiter.done():
                self._cancel_handle(handle)

    def is_scheduled(self, cache_key: str, name: str) -> bool:
        return (cache_key, name) in self._timers

    def pending(self) -> List[Tuple[str, str]]:
        return list(self._timers)

    def _call_later(self, delay: float, fn: Callable[[], None]) -> Any:
        return asyncio.get_running_loop().call_later(delay, fn)

    def _cancel_handle(self, handle: Any) -> None:
        handle.cancel()
