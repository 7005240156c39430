"""Online/offline signal and a reachability probe that drives it."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Literal

from . import config

logger = logging.getLogger(__name__)

ConnectivityEvent = Literal["became_online", "became_offline"]
Listener = Callable[[ConnectivityEvent], None]


class ConnectivityMonitor:
    """Mirrors the platform connectivity signal as transition events.

    Listeners are only called when the state actually flips.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: list[Listener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        event: ConnectivityEvent = "became_online" if online else "became_offline"
        logger.info("Connectivity changed: %s", event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Connectivity listener failed on %s", event)


async def _tcp_reachable(host: str, port: int, timeout: float) -> bool:
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


class ConnectivityProbe:
    """Background task that feeds a TCP reachability check into a monitor."""

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        host: str | None = None,
        port: int | None = None,
        interval_s: float | None = None,
        check: Callable[[str, int, float], Awaitable[bool]] | None = None,
    ) -> None:
        self.monitor = monitor
        self.host = host or config.CONNECTIVITY_PROBE_HOST
        self.port = port or config.CONNECTIVITY_PROBE_PORT
        self.interval_s = (
            config.CONNECTIVITY_PROBE_INTERVAL_S if interval_s is None else interval_s
        )
        self._check = check or _tcp_reachable
        self._task: asyncio.Task | None = None

    async def probe_once(self) -> bool:
        timeout = max(0.5, min(self.interval_s, 3.0))
        try:
            reachable = bool(await self._check(self.host, self.port, timeout))
        except Exception:
            logger.exception("Connectivity probe to %s:%s failed", self.host, self.port)
            reachable = False
        self.monitor.set_online(reachable)
        return reachable

    def start(self) -> None:
        if self.interval_s <= 0:
            logger.warning("Connectivity probe disabled (interval=%s)", self.interval_s)
            return
        if isinstance(self._task, asyncio.Task) and not self._task.done():
            return
        self._task = asyncio.create_task(self._loop())

    async def _loop(self) -> None:
        logger.info(
            "Starting connectivity probe %s:%s (interval=%ss)",
            self.host,
            self.port,
            self.interval_s,
        )
        while True:
            await self.probe_once()
            await asyncio.sleep(self.interval_s)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
