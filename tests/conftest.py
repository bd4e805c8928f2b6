import os

# Set required credentials before importing any modules that read settings
os.environ.setdefault("REDIS_PASSWORD", "test-password")
os.environ.setdefault("API_KEY", "test-api-key")

from unittest.mock import Mock

import pytest

from db.database import init_database
from fare import FareCalculator
from matching.dispatch_matcher import DispatchMatcher
from matching.driver_registry import DriverRegistry
from notifications.relay import NotificationRelay
from settings import FareSettings
from trip import Place
from tests.factories import DESTINATION, PICKUP, FakeClock, north_of
from trips.trip_lifecycle import TripLifecycle


@pytest.fixture
def temp_sqlite_db(tmp_path):
    return tmp_path / "dispatch.db"


@pytest.fixture
def session_factory(temp_sqlite_db):
    return init_database(str(temp_sqlite_db))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_publisher():
    publisher = Mock()
    publisher.publish_sync = Mock()
    publisher.ping = Mock(return_value=True)
    return publisher


@pytest.fixture
def registry(session_factory, clock, mock_publisher):
    return DriverRegistry(session_factory, publisher=mock_publisher, clock=clock)


@pytest.fixture
def matcher(registry):
    return DispatchMatcher(registry)


@pytest.fixture
def relay(session_factory, clock, mock_publisher):
    return NotificationRelay(session_factory, publisher=mock_publisher, clock=clock)


@pytest.fixture
def fare_calculator():
    return FareCalculator(FareSettings())


@pytest.fixture
def lifecycle(session_factory, registry, matcher, fare_calculator, relay, clock):
    return TripLifecycle(
        session_factory,
        registry=registry,
        matcher=matcher,
        fare_calculator=fare_calculator,
        relay=relay,
        clock=clock,
    )


@pytest.fixture
def pickup():
    return Place(coordinates=PICKUP, address="Kigali Convention Centre")


@pytest.fixture
def destination():
    return Place(coordinates=DESTINATION, address="Kigali International Airport")


@pytest.fixture
def place_driver(registry):
    """Register an available driver km kilometres north of the pickup."""

    def _place(driver_id: str, km: float, available: bool = True):
        registry.register_driver(driver_id, name=f"Driver {driver_id}")
        registry.set_availability(driver_id, available)
        return registry.report_location(driver_id, north_of(PICKUP, km))

    return _place


@pytest.fixture
def three_drivers(place_driver):
    """d_near at 0.8 km, d_mid at 1.2 km and d_far at 3.0 km from the pickup."""
    place_driver("d_near", 0.8)
    place_driver("d_mid", 1.2)
    place_driver("d_far", 3.0)
    return ["d_near", "d_mid", "d_far"]
