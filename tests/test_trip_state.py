import pytest

from core.exceptions import InvalidTransitionError
from tests.factories import DESTINATION, PICKUP
from trip import (
    DRIVER_TRANSITIONS,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    Place,
    Trip,
    TripStatus,
)


def make_trip(status: TripStatus = TripStatus.PENDING, **overrides) -> Trip:
    data = {
        "trip_id": "trip_001",
        "client_id": "client_001",
        "driver_id": "driver_001",
        "status": status,
        "pickup": Place(coordinates=PICKUP, address="Pickup"),
        "destination": Place(coordinates=DESTINATION, address="Destination"),
        "distance_km": 5.0,
        "quoted_amount": 2500.0,
        "amount": 2500.0,
    }
    data.update(overrides)
    return Trip(**data)


@pytest.mark.unit
class TestTripStatusEnum:
    def test_trip_status_values(self):
        """All six lifecycle states exist with their wire values."""
        assert TripStatus.PENDING.value == "pending"
        assert TripStatus.ACCEPTED.value == "accepted"
        assert TripStatus.HEADING_TO_PICKUP.value == "heading_to_pickup"
        assert TripStatus.PICKED_UP.value == "picked_up"
        assert TripStatus.COMPLETED.value == "completed"
        assert TripStatus.CANCELLED.value == "cancelled"
        assert len(TripStatus) == 6

    def test_event_type(self):
        """Statuses map to trip.<status> event types."""
        assert TripStatus.PICKED_UP.to_event_type() == "trip.picked_up"

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {TripStatus.COMPLETED, TripStatus.CANCELLED}
        assert TripStatus.COMPLETED.is_terminal
        assert not TripStatus.PICKED_UP.is_terminal


@pytest.mark.unit
class TestTripTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (TripStatus.PENDING, TripStatus.PENDING),
            (TripStatus.PENDING, TripStatus.ACCEPTED),
            (TripStatus.PENDING, TripStatus.CANCELLED),
            (TripStatus.ACCEPTED, TripStatus.HEADING_TO_PICKUP),
            (TripStatus.HEADING_TO_PICKUP, TripStatus.PICKED_UP),
            (TripStatus.PICKED_UP, TripStatus.COMPLETED),
            (TripStatus.PICKED_UP, TripStatus.CANCELLED),
        ],
    )
    def test_valid_transitions(self, current, target):
        """Edges of the lifecycle graph are accepted."""
        trip = make_trip(current)
        assert trip.can_transition_to(target)
        trip.check_transition(target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (TripStatus.PENDING, TripStatus.PICKED_UP),
            (TripStatus.PENDING, TripStatus.COMPLETED),
            (TripStatus.ACCEPTED, TripStatus.COMPLETED),
            (TripStatus.HEADING_TO_PICKUP, TripStatus.ACCEPTED),
        ],
    )
    def test_invalid_transitions(self, current, target):
        """Skipping or reversing steps raises InvalidTransitionError."""
        trip = make_trip(current)
        with pytest.raises(InvalidTransitionError):
            trip.check_transition(target)

    @pytest.mark.parametrize("terminal", [TripStatus.COMPLETED, TripStatus.CANCELLED])
    def test_terminal_states_have_no_exits(self, terminal):
        """Nothing leaves a terminal state, not even cancellation."""
        assert VALID_TRANSITIONS[terminal] == set()
        trip = make_trip(terminal)
        with pytest.raises(InvalidTransitionError, match="terminal"):
            trip.check_transition(TripStatus.CANCELLED)

    def test_driver_cannot_cancel_through_advance(self):
        """advance() only moves one step forward along the driver path."""
        trip = make_trip(TripStatus.ACCEPTED)
        with pytest.raises(InvalidTransitionError):
            trip.check_driver_advance(TripStatus.CANCELLED)

    def test_driver_path_is_linear(self):
        assert DRIVER_TRANSITIONS == {
            TripStatus.ACCEPTED: TripStatus.HEADING_TO_PICKUP,
            TripStatus.HEADING_TO_PICKUP: TripStatus.PICKED_UP,
            TripStatus.PICKED_UP: TripStatus.COMPLETED,
        }


@pytest.mark.unit
class TestTripModel:
    def test_searching_requires_pending_without_driver(self):
        assert make_trip(TripStatus.PENDING, driver_id=None).is_searching
        assert not make_trip(TripStatus.PENDING).is_searching
        assert not make_trip(TripStatus.ACCEPTED, driver_id=None).is_searching

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            make_trip(amount=-1.0)
