"""Network reachability monitors that fire reconnect callbacks."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from services.sync_engine.remote_client import RemoteEntryClient

logger = logging.getLogger(__name__)

ReconnectCallback = Callable[[], object]


class NetworkMonitor(ABC):
    """Reports reachability and notifies listeners on offline-to-online transitions."""

    def __init__(self, initially_online: bool = False):
        self._online = initially_online
        self._callbacks: List[ReconnectCallback] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def add_reconnect_callback(self, callback: ReconnectCallback) -> None:
        self._callbacks.append(callback)

    def _update(self, online: bool) -> None:
        was_online = self._online
        self._online = online
        if online and not was_online:
            logger.info("Network reachable again")
            for callback in self._callbacks:
                try:
                    callback()
                except Exception as e:
                    logger.error(f"Reconnect callback failed: {e}", exc_info=True)
        elif was_online and not online:
            logger.info("Network unreachable")

    @abstractmethod
    async def start(self) -> None:
        """Begin watching reachability."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop watching reachability."""


class ManualNetworkMonitor(NetworkMonitor):
    """Monitor driven by an external platform hook (or a test)."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    def set_online(self, online: bool) -> None:
        self._update(online)


class PollingNetworkMonitor(NetworkMonitor):
    """Probes the remote health endpoint on an interval."""

    def __init__(self, remote: RemoteEntryClient, interval: float = 15.0, initially_online: bool = False):
        super().__init__(initially_online=initially_online)
        self.remote = remote
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def check(self) -> bool:
        """Probe once and fire callbacks on a reconnect."""
        online = await self.remote.health()
        self._update(online)
        return online

    async def _poll(self) -> None:
        while True:
            try:
                await self.check()
            except Exception as e:
                logger.error(f"Reachability probe failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._poll())
            logger.info(f"Polling network reachability every {self.interval}s")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
