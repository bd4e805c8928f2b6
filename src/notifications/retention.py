import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from db.utils import utc_now

from .relay import NotificationRelay

logger = logging.getLogger(__name__)


class NotificationRetentionSweeper:
    """Periodically deletes notifications past the retention window.

    Offers still awaiting an answer are kept until they resolve; the trip
    resolves them on accept, reject, expiry or cancellation.
    """

    def __init__(
        self,
        relay: NotificationRelay,
        retention_hours: int = 24,
        interval_seconds: float = 3600.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._relay = relay
        self._retention = timedelta(hours=retention_hours)
        self._interval = interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    def run_once(self) -> int:
        cutoff = self._clock() - self._retention
        return self._relay.purge_older_than(cutoff)

    async def start(self) -> None:
        self._task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.run_once)
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in notification retention loop")
                await asyncio.sleep(self._interval)
