"""Resilient fetch controller: loads one resource and keeps retrying it sanely.

The controller drives IDLE -> LOADING -> (SUCCESS | RETRYING | FAILED) for a
single resource key. Every fetch resolution, timer and connectivity event is
checked against the LifecycleGuard before it may touch state, so responses
from superseded attempts are dropped and nothing fires after `dispose()`.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Any, Awaitable, Callable

from . import config
from .backoff import BackoffScheduler, CallLater
from .connectivity import ConnectivityEvent, ConnectivityMonitor
from .errors import (
    ClientError,
    MaxRetriesExceededError,
    NotFoundError,
    OfflineError,
    classify,
    to_fetch_error,
)
from .guard import LifecycleGuard
from .models.attempt import AttemptContext
from .models.fetch_state import FetchSnapshot, FetchState

logger = logging.getLogger(__name__)

FetchResource = Callable[[str], Awaitable[Any]]
SnapshotListener = Callable[[FetchSnapshot], None]

_NUDGEABLE = (FetchState.RETRYING, FetchState.FAILED)
_BUSY = (FetchState.LOADING, FetchState.RETRYING)


class FetchController:
    def __init__(
        self,
        fetch_resource: FetchResource,
        *,
        monitor: ConnectivityMonitor | None = None,
        max_attempts: int | None = None,
        base_delay_ms: int | None = None,
        cap_delay_ms: int | None = None,
        jitter: float | None = None,
        abort_in_flight: bool | None = None,
        call_later: CallLater | None = None,
    ) -> None:
        self._fetch_resource = fetch_resource
        self.monitor = monitor or ConnectivityMonitor()
        self.max_attempts = config.MAX_RETRIES if max_attempts is None else max_attempts
        self.base_delay_ms = (
            config.RETRY_BASE_DELAY_MS if base_delay_ms is None else base_delay_ms
        )
        self.cap_delay_ms = (
            config.RETRY_CAP_DELAY_MS if cap_delay_ms is None else cap_delay_ms
        )
        self.jitter = config.RETRY_JITTER if jitter is None else jitter
        self.abort_in_flight = (
            config.ABORT_IN_FLIGHT if abort_in_flight is None else abort_in_flight
        )
        self._call_later = call_later

        self._guard = LifecycleGuard()
        self._ctx: AttemptContext | None = None
        self._listeners: list[SnapshotListener] = []
        self._snapshot = FetchSnapshot(
            max_attempts=self.max_attempts, offline=not self.monitor.is_online
        )

        self._guard.on_dispose(self.monitor.subscribe(self._on_connectivity))
        self._guard.on_dispose(self._release_context)
        self._guard.on_dispose(self._listeners.clear)

    # -- presentation-facing API -------------------------------------------

    @property
    def snapshot(self) -> FetchSnapshot:
        return self._snapshot

    @property
    def state(self) -> FetchState:
        return self._snapshot.state

    @property
    def disposed(self) -> bool:
        return self._guard.disposed

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call `listener` with every new snapshot; returns an unsubscribe."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def request(self, resource_key: str) -> None:
        """Start loading `resource_key`, superseding whatever ran before."""
        if self._guard.disposed:
            logger.debug("Ignoring request(%r) on disposed controller", resource_key)
            return
        self._start(resource_key)

    def retry_now(self) -> None:
        """Fetch again immediately with a fresh retry budget."""
        if self._guard.disposed:
            logger.debug("Ignoring retry_now() on disposed controller")
            return
        key = self._snapshot.resource_key
        if key is None:
            logger.warning("retry_now() called before any resource was requested")
            return
        logger.info("Manual retry requested for %s", key)
        self._start(key)

    def dispose(self) -> None:
        self._guard.dispose()

    # -- transitions -------------------------------------------------------

    def _start(self, resource_key: str) -> None:
        self._release_context()
        ctx = AttemptContext(
            resource_key=resource_key,
            max_attempts=self.max_attempts,
            scheduler=BackoffScheduler(
                self.base_delay_ms,
                self.cap_delay_ms,
                jitter=self.jitter,
                call_later=self._call_later,
            ),
        )
        self._ctx = ctx
        self._guard.bind(ctx)

        if not str(resource_key or "").strip():
            error = ClientError("Invalid resource key")
            ctx.last_error = error
            self._publish(
                ctx, FetchState.FAILED, error=error, reason_category="terminal"
            )
            return
        self._enter_loading(ctx)

    def _release_context(self) -> None:
        """Cancel the timer and, if allowed, the in-flight fetch of the old context."""
        ctx, self._ctx = self._ctx, None
        if ctx is None:
            return
        ctx.scheduler.cancel()
        task, ctx.task = ctx.task, None
        if self.abort_in_flight and task is not None and not task.done():
            task.cancel()

    def _enter_loading(self, ctx: AttemptContext) -> None:
        if not self.monitor.is_online:
            self._defer_offline(ctx)
            return
        self._publish(ctx, FetchState.LOADING)
        if self._guard.is_stale(ctx):
            return
        ctx.task = asyncio.get_running_loop().create_task(self._run_attempt(ctx))

    async def _run_attempt(self, ctx: AttemptContext) -> None:
        key = ctx.resource_key
        logger.debug("Fetching %s (attempt %d)", key, ctx.attempt_number)
        try:
            resource = await self._fetch_resource(key)
        except Exception as exc:
            if self._guard.is_stale(ctx):
                logger.debug("Dropping stale failure for %s: %s", key, exc)
                return
            ctx.task = None
            self._handle_failure(ctx, exc)
            return

        if self._guard.is_stale(ctx):
            logger.debug("Dropping stale response for %s", key)
            return
        ctx.task = None
        if resource is None:
            self._handle_failure(ctx, NotFoundError(f"{key} not found"))
            return
        logger.debug("Fetched %s after %d retries", key, ctx.attempt_number)
        ctx.last_error = None
        self._publish(ctx, FetchState.SUCCESS, resource=resource)

    def _handle_failure(self, ctx: AttemptContext, exc: BaseException) -> None:
        error = to_fetch_error(exc)
        ctx.last_error = error
        verdict = classify(error)

        if not verdict.retryable:
            logger.warning("Fetching %s failed: %s", ctx.resource_key, error)
            self._publish(
                ctx, FetchState.FAILED, error=error, reason_category="terminal"
            )
            return

        if not self.monitor.is_online:
            self._defer_offline(ctx, cause=error)
            return

        if not ctx.budget_left:
            final = MaxRetriesExceededError(error, ctx.attempt_number)
            ctx.last_error = final
            logger.warning(
                "Giving up on %s after %d retries: %s",
                ctx.resource_key,
                ctx.attempt_number,
                error,
            )
            self._publish(
                ctx,
                FetchState.FAILED,
                error=final,
                reason_category=verdict.category,
                retries_exhausted=True,
            )
            return

        delay_ms = ctx.scheduler.delay_for(ctx.attempt_number)
        ctx.attempt_number += 1
        ctx.scheduler.arm(delay_ms, lambda: self._on_timer(ctx))
        logger.info(
            "Retrying %s in %dms (%d/%d): %s",
            ctx.resource_key,
            delay_ms,
            ctx.attempt_number,
            ctx.max_attempts,
            error,
        )
        self._publish(
            ctx,
            FetchState.RETRYING,
            error=error,
            reason_category=verdict.category,
            next_retry_delay_ms=delay_ms,
            retry_at=time.monotonic() + delay_ms / 1000.0,
        )

    def _defer_offline(
        self, ctx: AttemptContext, cause: BaseException | None = None
    ) -> None:
        # Waits for became_online instead of spending the retry budget.
        ctx.scheduler.cancel()
        error = OfflineError()
        error.__cause__ = cause
        ctx.last_error = error
        logger.info(
            "Offline; deferring fetch of %s until connectivity returns",
            ctx.resource_key,
        )
        self._publish(ctx, FetchState.RETRYING, error=error, reason_category="offline")

    def _on_timer(self, ctx: AttemptContext) -> None:
        if self._guard.is_stale(ctx):
            return
        self._enter_loading(ctx)

    def _on_connectivity(self, event: ConnectivityEvent) -> None:
        if self._guard.disposed:
            return
        current = self._snapshot
        if event == "became_offline":
            if current.state in _BUSY:
                advisory = dataclasses.replace(
                    current, offline=True, reason_category="offline"
                )
                self._emit(advisory)
            else:
                self._snapshot = dataclasses.replace(current, offline=True)
            return

        ctx = self._ctx
        if (
            current.state in _NUDGEABLE
            and current.reason_category == "offline"
            and not self._guard.is_stale(ctx)
        ):
            logger.info("Back online; retrying %s now", ctx.resource_key)
            ctx.scheduler.cancel()
            self._enter_loading(ctx)
        elif current.state not in _BUSY:
            self._snapshot = dataclasses.replace(current, offline=False)
        elif current.offline:
            cleared = dataclasses.replace(current, offline=False)
            if current.state == FetchState.LOADING:
                cleared = dataclasses.replace(cleared, reason_category=None)
            self._emit(cleared)

    # -- publishing --------------------------------------------------------

    def _publish(self, ctx: AttemptContext, state: FetchState, **fields: Any) -> None:
        self._emit(
            FetchSnapshot(
                state=state,
                resource_key=ctx.resource_key,
                attempt_number=ctx.attempt_number,
                max_attempts=ctx.max_attempts,
                offline=not self.monitor.is_online,
                **fields,
            )
        )

    def _emit(self, snapshot: FetchSnapshot) -> None:
        self._snapshot = snapshot
        logger.debug(
            "%s -> %s (attempt %d/%d)",
            snapshot.resource_key,
            snapshot.state.value,
            snapshot.attempt_number,
            snapshot.max_attempts,
        )
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Fetch snapshot listener failed")
