import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from core.exceptions import ConflictError, NotFoundError
from db.utils import utc_now
from metrics.prometheus_exporter import update_dispatch_gauges
from trips.trip_lifecycle import TripLifecycle

from .driver_registry import DriverRegistry

logger = logging.getLogger(__name__)

SEARCH_TIMEOUT_REASON = "No driver accepted the trip in time"


@dataclass
class SweepResult:
    expired_offers: int = 0
    reassigned: int = 0
    cancelled: int = 0


class OfferTimeoutSweeper:
    """Expires unanswered offers and keeps searching trips moving.

    Each pass auto-rejects offers older than the offer timeout (which hands
    the trip to the next driver), retries matching for trips without a
    driver, and cancels a trip only when matching still finds nobody after it
    has been searching longer than the search timeout.
    Passes race with live responses; a trip that changed underneath the
    sweeper raises ConflictError and is skipped.
    """

    def __init__(
        self,
        lifecycle: TripLifecycle,
        registry: DriverRegistry,
        offer_timeout_seconds: int = 30,
        search_timeout_seconds: int = 300,
        interval_seconds: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._lifecycle = lifecycle
        self._registry = registry
        self._offer_timeout = timedelta(seconds=offer_timeout_seconds)
        self._search_timeout = timedelta(seconds=search_timeout_seconds)
        self._interval = interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    def run_once(self) -> SweepResult:
        result = SweepResult()
        now = self._clock()

        for trip in self._lifecycle.list_expired_offers(now - self._offer_timeout):
            if trip.driver_id is None:
                continue
            try:
                self._lifecycle.expire_offer(trip.trip_id, trip.driver_id)
                result.expired_offers += 1
            except (ConflictError, NotFoundError) as e:
                logger.debug(f"Skipping offer expiry for trip {trip.trip_id}: {e}")

        for trip in self._lifecycle.list_searching_trips():
            try:
                updated = self._lifecycle.retry_searching(trip.trip_id)
                if not updated.is_searching:
                    if updated.driver_id is not None:
                        result.reassigned += 1
                    continue
                searching_since = updated.searching_since or updated.created_at
                if searching_since is not None and now - searching_since >= self._search_timeout:
                    self._lifecycle.cancel(trip.trip_id, "system", SEARCH_TIMEOUT_REASON)
                    result.cancelled += 1
            except (ConflictError, NotFoundError) as e:
                logger.debug(f"Skipping searching trip {trip.trip_id}: {e}")

        self._update_gauges()
        return result

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
                await asyncio.sleep(self._interval)
                result = await asyncio.to_thread(self.run_once)
                if result.expired_offers or result.cancelled:
                    logger.info(
                        f"Sweep expired {result.expired_offers} offers, "
                        f"reassigned {result.reassigned} and cancelled {result.cancelled} trips"
                    )
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in offer timeout loop")

    def _update_gauges(self) -> None:
        update_dispatch_gauges(
            trips_in_flight=self._lifecycle.count_in_flight(),
            trips_searching=len(self._lifecycle.list_searching_trips()),
            drivers_available=len(self._registry.list_available()),
        )
