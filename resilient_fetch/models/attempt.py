"""Per-request attempt bookkeeping."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..backoff import BackoffScheduler

_generations = itertools.count(1)


@dataclass(eq=False)
class AttemptContext:
    """One logical fetch-and-retry sequence for a resource key.

    Identity matters: two contexts for the same key are still different
    sequences, so equality is object identity. The context owns its
    scheduler, and with it the only retry timer it may ever have pending.
    """

    resource_key: str
    max_attempts: int
    scheduler: BackoffScheduler
    attempt_number: int = 0
    last_error: BaseException | None = None
    task: asyncio.Task | None = None
    generation: int = field(default_factory=lambda: next(_generations))

    @property
    def budget_left(self) -> bool:
        return self.attempt_number < self.max_attempts
