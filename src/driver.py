"""Driver domain records."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class DriverRecord:
    driver_id: str
    available: bool
    active: bool = True
    name: str | None = None
    location: tuple[float, float] | None = None
    location_updated_at: datetime | None = None
    active_trip: str | None = None

    @property
    def busy(self) -> bool:
        return self.active_trip is not None


@dataclass(frozen=True)
class AvailableDriver:
    """Dispatch candidate snapshot: an idle driver with a fresh location."""

    driver_id: str
    location: tuple[float, float]
