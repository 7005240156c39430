"""Shared test fixtures and dummy classes."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from resilient_fetch.models.fetch_state import FetchSnapshot


class ManualHandle:
    """Timer handle returned by ManualClock."""

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Stand-in for loop.call_later that only fires when told to."""

    def __init__(self) -> None:
        self.handles: list[ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[ManualHandle]:
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def fire_next(self) -> float:
        handle = self.pending[0]
        handle.fired = True
        handle.callback()
        return handle.delay


class ScriptedFetch:
    """Async fetch that plays back results and exceptions in order."""

    def __init__(self, *outcomes: Any, default: Any = None) -> None:
        self.outcomes = list(outcomes)
        self.default = default
        self.calls: list[str] = []

    async def __call__(self, key: str) -> Any:
        self.calls.append(key)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class GatedFetch:
    """Async fetch whose calls stay pending until the test resolves them."""

    def __init__(self) -> None:
        self.pending: list[tuple[str, asyncio.Future]] = []

    async def __call__(self, key: str) -> Any:
        fut = asyncio.get_running_loop().create_future()
        self.pending.append((key, fut))
        return await fut

    def future_for(self, key: str) -> asyncio.Future:
        for k, fut in self.pending:
            if k == key:
                return fut
        raise KeyError(key)


class SnapshotRecorder:
    """Listener that keeps every snapshot a controller publishes."""

    def __init__(self) -> None:
        self.snapshots: list[FetchSnapshot] = []

    def __call__(self, snapshot: FetchSnapshot) -> None:
        self.snapshots.append(snapshot)

    @property
    def states(self) -> list[str]:
        return [s.state.value for s in self.snapshots]


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run until the loop has nothing left to do right now."""
    for _ in range(rounds):
        await asyncio.sleep(0)
