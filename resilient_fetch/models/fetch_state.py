"""Fetch state enum and the snapshot published to views."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

ReasonCategory = Literal["offline", "server-error", "timeout", "terminal"]


class FetchState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class FetchSnapshot:
    """Immutable view of a controller at one point in its lifecycle.

    `reason_category`, `next_retry_delay_ms` and `retry_at` are only set while
    retrying or after a failure. `retry_at` is a `time.monotonic()` deadline.
    """

    state: FetchState = FetchState.IDLE
    resource_key: str | None = None
    resource: Any = None
    error: BaseException | None = None
    reason_category: ReasonCategory | None = None
    attempt_number: int = 0
    max_attempts: int = 0
    next_retry_delay_ms: int | None = None
    retry_at: float | None = None
    offline: bool = False
    retries_exhausted: bool = False

    def seconds_until_retry(self, now: float | None = None) -> float | None:
        if self.retry_at is None:
            return None
        current = time.monotonic() if now is None else now
        return max(0.0, self.retry_at - current)
