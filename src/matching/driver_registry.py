import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from core.exceptions import NotFoundError
from db.repositories import DriverRepository
from db.transaction import transaction
from db.utils import utc_now
from driver import AvailableDriver, DriverRecord
from geo.distance import Coordinate
from pubsub.channels import CHANNEL_DRIVER_UPDATES, DriverUpdateMessage
from redis_client.publisher import RedisPublisher

logger = logging.getLogger(__name__)


class DriverRegistry:
    """Registry of driver identity, availability and last known location.

    Thread-safe: state lives in the database and every write is a single
    conditional UPDATE, so request threads and the sweeper can call it
    concurrently. claim() and release() take the caller's session so they
    commit together with the trip write they belong to.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Any],
        staleness_window_seconds: int = 120,
        publisher: RedisPublisher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._staleness_window = timedelta(seconds=staleness_window_seconds)
        self._publisher = publisher
        self._clock = clock

    def register_driver(self, driver_id: str, name: str | None = None) -> DriverRecord:
        with self._session_factory() as session:
            with transaction(session):
                record = DriverRepository(session).upsert(driver_id, name, self._clock())
        logger.info(f"Driver {driver_id} registered")
        self._publish(record)
        return record

    def set_availability(self, driver_id: str, available: bool) -> DriverRecord:
        record = self._apply(
            driver_id, lambda repo, now: repo.set_availability(driver_id, available, now)
        )
        self._publish(record)
        return record

    def report_location(self, driver_id: str, coordinate: Coordinate) -> DriverRecord:
        """Overwrite the driver's last known location (last write wins)."""
        record = self._apply(
            driver_id,
            lambda repo, now: repo.update_location(driver_id, coordinate.lat, coordinate.lon, now),
        )
        self._publish(record)
        return record

    def deactivate(self, driver_id: str) -> DriverRecord:
        """Take a driver out of dispatch permanently; the row is kept."""
        record = self._apply(driver_id, lambda repo, now: repo.deactivate(driver_id, now))
        logger.info(f"Driver {driver_id} deactivated")
        self._publish(record)
        return record

    def get(self, driver_id: str) -> DriverRecord:
        with self._session_factory() as session:
            record = DriverRepository(session).get(driver_id)
        if record is None:
            raise _not_found(driver_id)
        return record

    def list_available(self, session: Session | None = None) -> list[AvailableDriver]:
        """Dispatchable drivers, ordered by driver id."""
        fresh_since = self._clock() - self._staleness_window
        if session is not None:
            return DriverRepository(session).list_available(fresh_since)
        with self._session_factory() as own_session:
            return DriverRepository(own_session).list_available(fresh_since)

    def claim(self, session: Session, driver_id: str, trip_id: str) -> bool:
        return DriverRepository(session).claim(driver_id, trip_id, self._clock())

    def release(self, session: Session, driver_id: str, trip_id: str) -> bool:
        return DriverRepository(session).release(driver_id, trip_id, self._clock())

    def _apply(
        self, driver_id: str, write: Callable[[DriverRepository, datetime], bool]
    ) -> DriverRecord:
        with self._session_factory() as session:
            with transaction(session):
                repo = DriverRepository(session)
                if not write(repo, self._clock()):
                    raise _not_found(driver_id)
                record = repo.get(driver_id)
        if record is None:
            raise _not_found(driver_id)
        return record

    def _publish(self, record: DriverRecord) -> None:
        if self._publisher is None:
            return
        message = DriverUpdateMessage(
            driver_id=record.driver_id,
            location=record.location,
            available=record.available and record.active,
            trip_id=record.active_trip,
            timestamp=self._clock().isoformat(),
        )
        self._publisher.publish_sync(CHANNEL_DRIVER_UPDATES, message.model_dump())


def _not_found(driver_id: str) -> NotFoundError:
    return NotFoundError(f"Driver {driver_id} not found", {"driver_id": driver_id})
