"""Exponential backoff policy and the retry timer it owns."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Callable

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_CAP_DELAY_MS = 10000

CallLater = Callable[[float, Callable[[], Any]], Any]


class BackoffScheduler:
    """Computes retry delays and holds at most one pending retry timer.

    `call_later` defaults to the running loop's `call_later`; tests pass a
    manual clock instead. `jitter` is a fraction in [0, 1] shaved off the
    computed delay, so the cap and the doubling trend are kept.
    """

    def __init__(
        self,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        cap_delay_ms: int = DEFAULT_CAP_DELAY_MS,
        jitter: float = 0.0,
        call_later: CallLater | None = None,
    ) -> None:
        self.base_delay_ms = base_delay_ms
        self.cap_delay_ms = cap_delay_ms
        self.jitter = min(1.0, max(0.0, jitter))
        self._call_later = call_later
        self._handle: Any = None

    def delay_for(self, attempt_number: int) -> int:
        """Milliseconds to wait before retry number `attempt_number` (0-based).

        Example:
            >>> [BackoffScheduler().delay_for(n) for n in range(5)]
            [1000, 2000, 4000, 8000, 10000]
        """
        n = max(0, attempt_number)
        # Stop doubling once past the cap so huge attempt numbers stay cheap.
        if self.base_delay_ms and n > self.cap_delay_ms.bit_length():
            delay = self.cap_delay_ms
        else:
            delay = min(self.base_delay_ms * (2**n), self.cap_delay_ms)
        if self.jitter:
            delay = int(delay * (1.0 - random.random() * self.jitter))
        return delay

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def arm(self, delay_ms: int, callback: Callable[[], None]) -> None:
        """Schedule `callback` after `delay_ms`, replacing any pending timer."""
        self.cancel()
        call_later = self._call_later or asyncio.get_running_loop().call_later

        def _fire() -> None:
            self._handle = None
            callback()

        self._handle = call_later(delay_ms / 1000.0, _fire)
        logger.debug("Retry timer armed for %dms", delay_ms)

    def cancel(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()
            logger.debug("Retry timer cancelled")
