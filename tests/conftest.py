"""
Shared fixtures: a hand-driven clock for timers and scripted fetch functions.
"""
import asyncio
import itertools
from typing import Any, Callable, List, Optional

import pytest

from querycache.cache import CacheStore, QueryClient, RetryPolicy, TimerScheduler


async def settle(rounds: int = 20) -> None:
    """Let pending tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class _ManualHandle:
    def __init__(self, due: float, seq: int, fn: Callable[[], None]):
        self.due = due
        self.seq = seq
        self.fn = fn
        self.cancelled = False


class ManualTimerScheduler(TimerScheduler):
    """TimerScheduler whose clock only moves when a test calls advance()."""

    def __init__(self):
        super().__init__()
        self.time = 0.0
        self._queue: List[_ManualHandle] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self.time

    def _call_later(self, delay: float, fn: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle(self.time + delay, next(self._seq), fn)
        self._queue.append(handle)
        return handle

    def _cancel_handle(self, handle: _ManualHandle) -> None:
        handle.cancelled = True

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self.time + seconds
        while True:
            due = [h for h in self._queue if not h.cancelled and h.due <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.due, h.seq))
            self._queue.remove(handle)
            self.time = handle.due
            handle.fn()
            await settle()
        self._queue = [h for h in self._queue if not h.cancelled]
        self.time = target
        await settle()


class FakeFetch:
    """
    Scripted async fetch function.

    Each call returns the next scripted result (the last one repeats);
    exceptions are raised. With no script it returns the call number.
    An optional gate holds every call until it is set.
    """

    def __init__(self, *results: Any, gate: Optional[asyncio.Event] = None):
        self.results = list(results)
        self.calls = 0
        self.gate = gate

    async def __call__(self) -> Any:
        self.calls += 1
        call = self.calls
        if self.gate is not None:
            await self.gate.wait()
        if not self.results:
            return call
        result = self.results[min(call - 1, len(self.results) - 1)]
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture
def timers():
    return ManualTimerScheduler()


@pytest.fixture
def store(timers):
    return CacheStore(
        timers=timers,
        retry_policy=RetryPolicy(backoff="immediate"),
        refetch_on_focus=False,
    )


@pytest.fixture
def client(store):
    return QueryClient(store=store)
