"""Staleness tracking and teardown for a controller instance."""

from __future__ import annotations

import logging
from typing import Callable

from .models.attempt import AttemptContext

logger = logging.getLogger(__name__)


class LifecycleGuard:
    """Tracks which AttemptContext is live and runs cleanups on dispose.

    Only the most recently bound context is live; everything else, and
    everything after `dispose()`, is stale.
    """

    def __init__(self) -> None:
        self._active: AttemptContext | None = None
        self._cleanups: list[Callable[[], None]] = []
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def active(self) -> AttemptContext | None:
        return None if self._disposed else self._active

    def bind(self, ctx: AttemptContext) -> None:
        if self._disposed:
            raise RuntimeError("Cannot bind an attempt to a disposed guard")
        self._active = ctx

    def is_stale(self, ctx: AttemptContext | None) -> bool:
        return self._disposed or ctx is None or ctx is not self._active

    def on_dispose(self, cleanup: Callable[[], None]) -> None:
        self._cleanups.append(cleanup)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._active = None
        cleanups, self._cleanups = self._cleanups, []
        for cleanup in reversed(cleanups):
            try:
                cleanup()
            except Exception:
                logger.exception("Dispose cleanup failed")
