"""
Request coalescing to prevent duplicate upstream fetches.

When multiple readers ask for the same key while a fetch is pending, only
one fetch runs and every reader awaits the same task.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress upstream fetch."""
    task: "asyncio.Task[Any]"
    started_at: float
    owner: Any = None
    waiter_count: int = 0


class RequestCoalescer:
    """
    Ensures concurrent requests for the same cache key share one fetch.

    Pattern:
    - First request for a key starts a task
    - Later requests for the same key get the same task back
    - A finished task is never handed out again; the next request starts fresh
    - Single event loop, so no locking is needed

    Usage:
        coalescer = RequestCoalescer()
        task = coalescer.start(
            cache_key='["/api/projects",12]',
            fetch_fn=lambda: load_project(12),
        )
        result = await task
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._clock = clock

    def start(
        self,
        cache_key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
        owner: Any = None,
    ) -> "asyncio.Task[Any]":
        """
        Either join an existing in-flight fetch or start a new one.

        Args:
            cache_key: Unique key for this request
            fetch_fn: Called to create the coroutine if nothing is in flight
            owner: Object the fetch works for; a fetch is only shared with
                callers passing the same owner

        Returns:
            The task shared by every caller for this key
        """
        in_flight = self._live(cache_key)
        if in_flight is not None and in_flight.owner is owner:
            in_flight.waiter_count += 1
            logger.debug(
                f"Coalescing request for {cache_key} "
                f"(waiters: {in_flight.waiter_count})"
            )
            return in_flight.task

        logger.debug(f"Initiating fetch for {cache_key}")
        task = asyncio.ensure_future(fetch_fn())
        in_flight = InFlightRequest(task=task, started_at=self._clock(), owner=owner)
        self._in_flight[cache_key] = in_flight

        def _done(finished: "asyncio.Task[Any]") -> None:
            # Only drop our own record, a newer fetch may own the key by now
            if self._in_flight.get(cache_key) is in_flight:
                del self._in_flight[cache_key]

        task.add_done_callback(_done)
        return task

    def _live(self, cache_key: str) -> Optional[InFlightRequest]:
        # A finished task stays registered until its done callback runs
        in_flight = self._in_flight.get(cache_key)
        if in_flight is None or in_flight.task.done():
            return None
        return in_flight

    def get(self, cache_key: str, owner: Any = None) -> Optional["asyncio.Task[Any]"]:
        """The unfinished task for a key (and owner, if given), if any."""
        in_flight = self._live(cache_key)
        if in_flight is None:
            return None
        if owner is not None and in_flight.owner is not owner:
            return None
        return in_flight.task

    def is_in_flight(self, cache_key: str) -> bool:
        return self._live(cache_key) is not None

    def is_registered(self, cache_key: str) -> bool:
        """True until the done callbacks of the last fetch for a key have run."""
        return cache_key in self._in_flight

    def detach(self, cache_key: str) -> bool:
        """
        Cancel and forget the fetch for a key so the next request starts a new one.

        Returns:
            True if an unfinished fetch was detached
        """
        in_flight = self._in_flight.pop(cache_key, None)
        if in_flight is None or in_flight.task.done():
            return False
        in_flight.task.cancel()
        logger.debug(f"Detached fetch for {cache_key}")
        return True

    async def wait_all(self) -> None:
        """Wait until nothing is in flight, including fetches started meanwhile."""
        while self._in_flight:
            tasks = [req.task for req in self._in_flight.values()]
            await asyncio.gather(*tasks, return_exceptions=True)
            # Let done callbacks run
            await asyncio.sleep(0)

    def cancel_all(self) -> int:
        """Cancel every in-flight fetch. Returns the number cancelled."""
        count = 0
        for in_flight in list(self._in_flight.values()):
            if not in_flight.task.done():
                in_flight.task.cancel()
                count += 1
        return count

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        now = self._clock()
        live = {
            key: req for key, req in self._in_flight.items() if not req.task.done()
        }
        return {
            "active_requests": len(live),
            "active_keys": list(live),
            "oldest_age_seconds": (
                round(max(now - req.started_at for req in live.values()), 1)
                if live else None
            ),
        }
