"""Driver repository with conditional writes for dispatch claims."""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from driver import AvailableDriver, DriverRecord

from ..schema import Driver


class DriverRepository:
    """Repository for driver records.

    Every mutation is a single UPDATE statement whose WHERE clause carries its
    precondition; the returned bool reports whether a row matched.
    """

    def __init__(self, session: Session):
        self.session = session

    def get(self, driver_id: str) -> DriverRecord | None:
        driver = self.session.get(Driver, driver_id, populate_existing=True)
        if driver is None:
            return None
        return self._to_domain(driver)

    def upsert(self, driver_id: str, name: str | None, now: datetime) -> DriverRecord:
        """Create a driver, or re-activate an existing one keeping its state."""
        driver = self.session.get(Driver, driver_id, populate_existing=True)
        if driver is None:
            driver = Driver(
                id=driver_id,
                name=name,
                available=False,
                active=True,
                created_at=now,
                updated_at=now,
            )
            self.session.add(driver)
        else:
            driver.active = True
            if name is not None:
                driver.name = name
            driver.updated_at = now
        self.session.flush()
        return self._to_domain(driver)

    def set_availability(self, driver_id: str, available: bool, now: datetime) -> bool:
        stmt = (
            update(Driver)
            .where(Driver.id == driver_id)
            .values(available=available, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def update_location(self, driver_id: str, lat: float, lon: float, now: datetime) -> bool:
        stmt = (
            update(Driver)
            .where(Driver.id == driver_id)
            .values(latitude=lat, longitude=lon, location_updated_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def deactivate(self, driver_id: str, now: datetime) -> bool:
        stmt = (
            update(Driver)
            .where(Driver.id == driver_id)
            .values(active=False, available=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def list_available(self, fresh_since: datetime) -> list[AvailableDriver]:
        """Active, available, idle drivers with a location reported since fresh_since.

        Ordered by driver id so that distance ties resolve deterministically.
        """
        stmt = (
            select(Driver.id, Driver.latitude, Driver.longitude)
            .where(
                Driver.active.is_(True),
                Driver.available.is_(True),
                Driver.active_trip.is_(None),
                Driver.latitude.is_not(None),
                Driver.longitude.is_not(None),
                Driver.location_updated_at >= fresh_since,
            )
            .order_by(Driver.id.asc())
        )
        return [
            AvailableDriver(driver_id=row.id, location=(row.latitude, row.longitude))
            for row in self.session.execute(stmt)
        ]

    def claim(self, driver_id: str, trip_id: str, now: datetime) -> bool:
        """Mark an idle, available driver as holding trip_id."""
        stmt = (
            update(Driver)
            .where(
                Driver.id == driver_id,
                Driver.active.is_(True),
                Driver.available.is_(True),
                Driver.active_trip.is_(None),
            )
            .values(active_trip=trip_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def release(self, driver_id: str, trip_id: str, now: datetime) -> bool:
        """Free a driver, but only from the trip they actually hold."""
        stmt = (
            update(Driver)
            .where(Driver.id == driver_id, Driver.active_trip == trip_id)
            .values(active_trip=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def _to_domain(self, driver: Driver) -> DriverRecord:
        location = None
        if driver.latitude is not None and driver.longitude is not None:
            location = (driver.latitude, driver.longitude)
        return DriverRecord(
            driver_id=driver.id,
            name=driver.name,
            available=driver.available,
            active=driver.active,
            location=location,
            location_updated_at=driver.location_updated_at,
            active_trip=driver.active_trip,
        )
