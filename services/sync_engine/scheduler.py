"""Single-flight sync scheduler."""

import asyncio
import logging
from typing import Optional

from services.sync_engine.pull import PullMerge
from services.sync_engine.push import PushSync

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Event-triggered, single-flight gate for sync cycles.

    Push and pull share this gate, so a pull never observes an entry halfway
    through its push commit. There is no periodic timer: cycles start only on
    capture, reconnect or an explicit trigger. A trigger that arrives while a
    cycle runs is folded into one more pass of that same cycle.
    """

    def __init__(self, push_sync: PushSync, pull_merge: Optional[PullMerge] = None):
        self.push_sync = push_sync
        self.pull_merge = pull_merge
        self._in_flight = False
        self._task: Optional[asyncio.Task] = None
        self._rerun_requested = False
        self._rerun_pull = False
        self.last_result: Optional[dict] = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def trigger(self, include_pull: bool = False) -> Optional[asyncio.Task]:
        """
        Start a sync cycle unless one is already running.

        Must be called from the event loop thread; the check-and-set of the
        guard cannot interleave with another trigger there.

        Args:
            include_pull: Also run the pull merge after the push (reconnect)

        Returns:
            The task running the new cycle, or None if the trigger collapsed
            into the cycle already in flight
        """
        if self._in_flight:
            self._rerun_requested = True
            self._rerun_pull = self._rerun_pull or include_pull
            logger.debug("Sync cycle already in flight, trigger collapsed into a rerun")
            return None

        self._in_flight = True
        try:
            self._task = asyncio.get_running_loop().create_task(self._run_cycle(include_pull))
        except RuntimeError:
            self._in_flight = False
            raise
        return self._task

    def on_reconnect(self) -> Optional[asyncio.Task]:
        """Reconnect callback: push, then pull."""
        logger.info("Network reconnected, triggering sync")
        return self.trigger(include_pull=True)

    async def wait_idle(self) -> None:
        """Wait for the cycle in flight, if any, to finish."""
        if self._task is not None:
            await asyncio.wait({self._task})

    async def _run_cycle(self, include_pull: bool) -> dict:
        result = {"push": None, "pull": None}
        try:
            while True:
                result["push"] = await self.push_sync.run()
                if include_pull and self.pull_merge is not None:
                    result["pull"] = await self.pull_merge.run()
                if not self._rerun_requested:
                    break
                include_pull = self._rerun_pull
                self._rerun_requested = False
                self._rerun_pull = False
                logger.debug("Triggers arrived during the cycle, running another pass")
        except Exception as e:
            logger.error(f"Sync cycle failed: {e}", exc_info=True)
            result["error"] = str(e)
        finally:
            self._rerun_requested = False
            self._rerun_pull = False
            self._in_flight = False
        self.last_result = result
        return result
