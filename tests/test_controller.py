"""Tests for the fetch controller state machine."""

import pytest

from resilient_fetch.connectivity import ConnectivityMonitor
from resilient_fetch.controller import FetchController
from resilient_fetch.errors import (
    ClientError,
    MaxRetriesExceededError,
    NetworkTransportError,
    NotFoundError,
    OfflineError,
    ServerError,
)
from resilient_fetch.models.fetch_state import FetchState

from conftest import GatedFetch, ManualClock, ScriptedFetch, SnapshotRecorder, settle


def _controller(fetch, clock=None, monitor=None, **kwargs) -> FetchController:
    kwargs.setdefault("max_attempts", 3)
    kwargs.setdefault("base_delay_ms", 1000)
    kwargs.setdefault("cap_delay_ms", 10000)
    kwargs.setdefault("jitter", 0.0)
    kwargs.setdefault("abort_in_flight", True)
    return FetchController(
        fetch,
        monitor=monitor or ConnectivityMonitor(),
        call_later=(clock or ManualClock()).call_later,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_two_server_errors_then_success() -> None:
    clock = ManualClock()
    fetch = ScriptedFetch(
        ServerError("HTTP 503", 503), ServerError("HTTP 503", 503), {"amount": 500}
    )
    ctrl = _controller(fetch, clock)
    recorder = SnapshotRecorder()
    ctrl.subscribe(recorder)

    ctrl.request("p-1")
    await settle()
    assert clock.fire_next() == 1.0
    await settle()
    assert clock.fire_next() == 2.0
    await settle()

    assert recorder.states == [
        "loading",
        "retrying",
        "loading",
        "retrying",
        "loading",
        "success",
    ]
    first_retry, second_retry = recorder.snapshots[1], recorder.snapshots[3]
    assert (first_retry.attempt_number, first_retry.next_retry_delay_ms) == (1, 1000)
    assert (second_retry.attempt_number, second_retry.next_retry_delay_ms) == (2, 2000)
    assert first_retry.reason_category == "server-error"
    assert ctrl.snapshot.resource == {"amount": 500}
    assert fetch.calls == ["p-1", "p-1", "p-1"]


@pytest.mark.asyncio
async def test_not_found_fails_without_retry() -> None:
    clock = ManualClock()
    fetch = ScriptedFetch(NotFoundError("HTTP 404"))
    ctrl = _controller(fetch, clock)
    recorder = SnapshotRecorder()
    ctrl.subscribe(recorder)

    ctrl.request("p-2")
    await settle()

    assert recorder.states == ["loading", "failed"]
    assert isinstance(ctrl.snapshot.error, ClientError)
    assert ctrl.snapshot.reason_category == "terminal"
    assert ctrl.snapshot.retries_exhausted is False
    assert clock.handles == []
    assert len(fetch.calls) == 1


@pytest.mark.asyncio
async def test_retry_budget_allows_four_attempts() -> None:
    clock = ManualClock()
    fetch = ScriptedFetch(default=ServerError("HTTP 502", 502))
    ctrl = _controller(fetch, clock)

    ctrl.request("p-3")
    await settle()
    delays = []
    while clock.pending:
        delays.append(clock.fire_next())
        await settle()

    assert len(fetch.calls) == 4
    assert delays == [1.0, 2.0, 4.0]
    assert ctrl.state == FetchState.FAILED
    assert ctrl.snapshot.retries_exhausted is True
    error = ctrl.snapshot.error
    assert isinstance(error, MaxRetriesExceededError)
    assert isinstance(error.last_error, ServerError)
    assert ctrl.snapshot.reason_category == "server-error"


@pytest.mark.asyncio
async def test_stale_response_after_key_change_is_dropped() -> None:
    fetch = GatedFetch()
    ctrl = _controller(fetch, abort_in_flight=False)
    recorder = SnapshotRecorder()
    ctrl.subscribe(recorder)

    ctrl.request("old")
    await settle()
    ctrl.request("new")
    await settle()

    fetch.future_for("new").set_result({"id": "new"})
    await settle()
    seen = len(recorder.snapshots)

    fetch.future_for("old").set_result({"id": "old"})
    await settle()

    assert len(recorder.snapshots) == seen
    assert ctrl.state == FetchState.SUCCESS
    assert ctrl.snapshot.resource_key == "new"
    assert ctrl.snapshot.resource == {"id": "new"}


@pytest.mark.asyncio
async def test_stale_failure_after_key_change_arms_nothing() -> None:
    clock = ManualClock()
    fetch = GatedFetch()
    ctrl = _controller(fetch, clock, abort_in_flight=False)

    ctrl.request("old")
    await settle()
    ctrl.request("new")
    await settle()
    fetch.future_for("old").set_exception(ServerError("HTTP 500", 500))
    await settle()

    assert ctrl.state == FetchState.LOADING
    assert ctrl.snapshot.resource_key == "new"
    assert clock.handles == []


@pytest.mark.asyncio
async def test_key_change_aborts_in_flight_fetch() -> None:
    fetch = GatedFetch()
    ctrl = _controller(fetch, abort_in_flight=True)

    ctrl.request("old")
    await settle()
    ctrl.request("new")
    await settle()

    assert fetch.future_for("old").cancelled()
    assert not fetch.future_for("new").done()


@pytest.mark.asyncio
async def test_dispose_while_retrying_leaks_nothing() -> None:
    clock = ManualClock()
    monitor = ConnectivityMonitor()
    fetch = ScriptedFetch(ServerError("HTTP 503", 503), {"amount": 1})
    ctrl = _controller(fetch, clock, monitor)
    recorder = SnapshotRecorder()
    ctrl.subscribe(recorder)

    ctrl.request("p-1")
    await settle()
    assert ctrl.state == FetchState.RETRYING
    handle = clock.handles[0]

    ctrl.dispose()
    assert handle.cancelled
    assert monitor.listener_count == 0

    # The original delay elapsing anyway must be a no-op.
    seen = len(recorder.snapshots)
    handle.callback()
    monitor.set_online(False)
    monitor.set_online(True)
    await settle()

    assert len(recorder.snapshots) == seen
    assert fetch.calls == ["p-1"]

    ctrl.dispose()
    ctrl.request("p-9")
    ctrl.retry_now()
    await settle()
    assert fetch.calls == ["p-1"]


@pytest.mark.asyncio
async def test_offline_request_defers_until_online() -> None:
    clock = ManualClock()
    monitor = ConnectivityMonitor(online=False)
    fetch = ScriptedFetch({"amount": 9})
    ctrl = _controller(fetch, clock, monitor)

    ctrl.request("p-4")
    await settle()

    assert ctrl.state == FetchState.RETRYING
    assert isinstance(ctrl.snapshot.error, OfflineError)
    assert ctrl.snapshot.reason_category == "offline"
    assert ctrl.snapshot.next_retry_delay_ms is None
    assert fetch.calls == []
    assert clock.handles == []

    monitor.set_online(True)
    assert ctrl.state == FetchState.LOADING
    assert ctrl.snapshot.attempt_number == 0
    await settle()

    assert ctrl.state == FetchState.SUCCESS
    assert fetch.calls == ["p-4"]


@pytest.mark.asyncio
async def test_online_nudge_skips_backoff_and_keeps_attempt_number() -> None:
    clock = ManualClock()
    monitor = ConnectivityMonitor()
    fetch = ScriptedFetch(ServerError("HTTP 503", 503), {"amount": 2})
    ctrl = _controller(fetch, clock, monitor)

    ctrl.request("p-5")
    await settle()
    assert ctrl.snapshot.attempt_number == 1
    timer = clock.handles[0]

    monitor.set_online(False)
    assert ctrl.state == FetchState.RETRYING
    assert ctrl.snapshot.offline is True
    assert ctrl.snapshot.reason_category == "offline"
    assert not timer.cancelled

    monitor.set_online(True)
    assert timer.cancelled
    assert ctrl.state == FetchState.LOADING
    assert ctrl.snapshot.attempt_number == 1
    await settle()

    assert ctrl.state == FetchState.SUCCESS
    assert len(fetch.calls) == 2


@pytest.mark.asyncio
async def test_going_offline_while_loading_is_advisory() -> None:
    monitor = ConnectivityMonitor()
    fetch = GatedFetch()
    ctrl = _controller(fetch, monitor=monitor)

    ctrl.request("p-6")
    await settle()
    monitor.set_online(False)

    assert ctrl.state == FetchState.LOADING
    assert ctrl.snapshot.offline is True
    assert not fetch.future_for("p-6").done()

    fetch.future_for("p-6").set_result({"amount": 3})
    await settle()
    assert ctrl.state == FetchState.SUCCESS


@pytest.mark.asyncio
async def test_transport_failure_while_offline_does_not_spend_budget() -> None:
    clock = ManualClock()
    monitor = ConnectivityMonitor()
    fetch = GatedFetch()
    ctrl = _controller(fetch, clock, monitor)

    ctrl.request("p-7")
    await settle()
    monitor.set_online(False)
    fetch.future_for("p-7").set_exception(NetworkTransportError("Failed to fetch"))
    await settle()

    assert ctrl.state == FetchState.RETRYING
    assert isinstance(ctrl.snapshot.error, OfflineError)
    assert ctrl.snapshot.attempt_number == 0
    assert clock.handles == []


@pytest.mark.asyncio
async def test_online_event_in_success_does_nothing() -> None:
    monitor = ConnectivityMonitor()
    fetch = ScriptedFetch({"amount": 4})
    ctrl = _controller(fetch, monitor=monitor)
    recorder = SnapshotRecorder()
    ctrl.subscribe(recorder)

    ctrl.request("p-8")
    await settle()
    monitor.set_online(False)
    monitor.set_online(True)
    await settle()

    assert ctrl.state == FetchState.SUCCESS
    assert ctrl.snapshot.offline is False
    assert fetch.calls == ["p-8"]
    assert recorder.states == ["loading", "success"]


@pytest.mark.asyncio
async def test_back_online_while_loading_clears_offline_advisory() -> None:
    monitor = ConnectivityMonitor()
    fetch = GatedFetch()
    ctrl = _controller(fetch, monitor=monitor)

    ctrl.request("p-8b")
    await settle()
    monitor.set_online(False)
    assert ctrl.snapshot.reason_category == "offline"
    monitor.set_online(True)

    assert ctrl.state == FetchState.LOADING
    assert ctrl.snapshot.offline is False
    assert ctrl.snapshot.reason_category is None
    assert len(fetch.pending) == 1


@pytest.mark.asyncio
async def test_key_change_while_retrying_cancels_old_timer() -> None:
    clock = ManualClock()
    fetch = GatedFetch()
    ctrl = _controller(fetch, clock)
    recorder = SnapshotRecorder()
    ctrl.subscribe(recorder)

    ctrl.request("a")
    await settle()
    fetch.future_for("a").set_exception(ServerError("HTTP 502", 502))
    await settle()
    assert ctrl.state == FetchState.RETRYING
    old_timer = clock.handles[0]

    ctrl.request("b")
    assert old_timer.cancelled
    assert ctrl.state == FetchState.LOADING
    assert ctrl.snapshot.resource_key == "b"
    assert ctrl.snapshot.attempt_number == 0
    await settle()
    seen = len(recorder.snapshots)

    old_timer.callback()
    await settle()

    assert len(recorder.snapshots) == seen
    assert [key for key, _ in fetch.pending] == ["a", "b"]


@pytest.mark.asyncio
async def test_retry_now_resets_budget_after_exhaustion() -> None:
    clock = ManualClock()
    fetch = ScriptedFetch(default=ServerError("HTTP 500", 500))
    ctrl = _controller(fetch, clock, max_attempts=1)

    ctrl.request("p-9")
    await settle()
    clock.fire_next()
    await settle()
    assert ctrl.snapshot.retries_exhausted is True

    fetch.default = {"amount": 5}
    ctrl.retry_now()
    assert ctrl.state == FetchState.LOADING
    assert ctrl.snapshot.attempt_number == 0
    await settle()
    assert ctrl.state == FetchState.SUCCESS


@pytest.mark.asyncio
async def test_retry_now_bypasses_pending_backoff() -> None:
    clock = ManualClock()
    fetch = ScriptedFetch(ServerError("HTTP 503", 503), {"amount": 6})
    ctrl = _controller(fetch, clock)

    ctrl.request("p-10")
    await settle()
    timer = clock.handles[0]

    ctrl.retry_now()
    assert timer.cancelled
    await settle()
    assert ctrl.state == FetchState.SUCCESS
    assert ctrl.snapshot.attempt_number == 0


@pytest.mark.asyncio
async def test_none_result_is_not_found() -> None:
    fetch = ScriptedFetch(None)
    ctrl = _controller(fetch)

    ctrl.request("p-11")
    await settle()

    assert ctrl.state == FetchState.FAILED
    assert isinstance(ctrl.snapshot.error, NotFoundError)


@pytest.mark.asyncio
async def test_blank_key_fails_without_fetching() -> None:
    fetch = ScriptedFetch({"amount": 7})
    ctrl = _controller(fetch)

    ctrl.request("  ")
    await settle()

    assert ctrl.state == FetchState.FAILED
    assert isinstance(ctrl.snapshot.error, ClientError)
    assert fetch.calls == []


@pytest.mark.asyncio
async def test_unknown_exception_is_terminal() -> None:
    fetch = ScriptedFetch(RuntimeError("boom"))
    ctrl = _controller(fetch)

    ctrl.request("p-12")
    await settle()

    assert ctrl.state == FetchState.FAILED
    assert ctrl.snapshot.reason_category == "terminal"
    assert "boom" in str(ctrl.snapshot.error)


@pytest.mark.asyncio
async def test_listener_errors_do_not_break_transitions() -> None:
    fetch = ScriptedFetch({"amount": 8})
    ctrl = _controller(fetch)

    def broken(_snapshot) -> None:
        raise RuntimeError("listener boom")

    ctrl.subscribe(broken)
    recorder = SnapshotRecorder()
    ctrl.subscribe(recorder)

    ctrl.request("p-13")
    await settle()

    assert recorder.states == ["loading", "success"]


@pytest.mark.asyncio
async def test_unsubscribed_listener_stops_receiving() -> None:
    fetch = ScriptedFetch({"amount": 9})
    ctrl = _controller(fetch)
    recorder = SnapshotRecorder()
    unsubscribe = ctrl.subscribe(recorder)

    unsubscribe()
    ctrl.request("p-14")
    await settle()

    assert recorder.snapshots == []
    assert ctrl.state == FetchState.SUCCESS
