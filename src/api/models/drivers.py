from datetime import datetime

from pydantic import BaseModel, Field

from driver import DriverRecord
from geo.distance import Coordinate


class DriverRegisterRequest(BaseModel):
    driver_id: str = Field(min_length=1, max_length=128)
    name: str | None = Field(default=None, max_length=128)


class DriverAvailabilityRequest(BaseModel):
    available: bool


class DriverResponse(BaseModel):
    driver_id: str
    name: str | None
    available: bool
    active: bool
    busy: bool
    location: Coordinate | None
    location_updated_at: datetime | None
    active_trip: str | None

    @classmethod
    def from_record(cls, record: DriverRecord) -> "DriverResponse":
        location = None
        if record.location is not None:
            location = Coordinate(lat=record.location[0], lon=record.location[1])
        return cls(
            driver_id=record.driver_id,
            name=record.name,
            available=record.available,
            active=record.active,
            busy=record.busy,
            location=location,
            location_updated_at=record.location_updated_at,
            active_trip=record.active_trip,
        )


class DriverEarningsResponse(BaseModel):
    driver_id: str
    total: float
    currency: str
