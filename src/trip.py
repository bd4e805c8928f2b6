"""Trip state machine and models."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from core.exceptions import InvalidTransitionError
from geo.distance import Coordinate

CancellationActor = Literal["client", "driver", "system"]


class TripStatus(str, Enum):
    """Trip lifecycle states."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    HEADING_TO_PICKUP = "heading_to_pickup"
    PICKED_UP = "picked_up"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    def to_event_type(self) -> str:
        """Convert status to a trip update event type (e.g., 'trip.accepted')."""
        return f"trip.{self.value}"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class TripOutcome(str, Enum):
    """How a terminal trip was settled."""

    FARE_COLLECTED = "fare_collected"
    COMPLETED_WITH_PENALTY = "completed_with_penalty"
    CANCELLED_NO_CHARGE = "cancelled_no_charge"


TERMINAL_STATUSES = frozenset({TripStatus.COMPLETED, TripStatus.CANCELLED})

# PENDING -> PENDING is the reassignment loop after a rejection or expired offer.
VALID_TRANSITIONS: dict[TripStatus, set[TripStatus]] = {
    TripStatus.PENDING: {TripStatus.PENDING, TripStatus.ACCEPTED, TripStatus.CANCELLED},
    TripStatus.ACCEPTED: {TripStatus.HEADING_TO_PICKUP, TripStatus.CANCELLED},
    TripStatus.HEADING_TO_PICKUP: {TripStatus.PICKED_UP, TripStatus.CANCELLED},
    TripStatus.PICKED_UP: {TripStatus.COMPLETED, TripStatus.CANCELLED},
    TripStatus.COMPLETED: set(),
    TripStatus.CANCELLED: set(),
}

# Transitions a driver may request through advance().
DRIVER_TRANSITIONS: dict[TripStatus, TripStatus] = {
    TripStatus.ACCEPTED: TripStatus.HEADING_TO_PICKUP,
    TripStatus.HEADING_TO_PICKUP: TripStatus.PICKED_UP,
    TripStatus.PICKED_UP: TripStatus.COMPLETED,
}

TRACKED_STATUSES = frozenset({TripStatus.HEADING_TO_PICKUP, TripStatus.PICKED_UP})


class Place(BaseModel):
    """A pickup or destination point with its human-readable address."""

    coordinates: Coordinate
    address: str = ""


class Trip(BaseModel):
    """Trip (booking) with state machine validation."""

    trip_id: str
    client_id: str
    driver_id: str | None = None
    status: TripStatus = Field(default=TripStatus.PENDING)
    outcome: TripOutcome | None = None
    pickup: Place
    destination: Place
    distance_km: float = Field(ge=0)
    quoted_amount: float = Field(ge=0)
    amount: float = Field(ge=0)
    distance_traveled_km: float = Field(default=0.0, ge=0)
    driver_location: Coordinate | None = None
    rejected_driver_ids: list[str] = Field(default_factory=list)
    offer_notification_id: str | None = None
    offer_sequence: int = Field(default=0)
    offer_sent_at: datetime | None = None
    searching_since: datetime | None = None
    cancelled_by: CancellationActor | None = None
    cancellation_reason: str | None = None
    created_at: datetime | None = None
    accepted_at: datetime | None = None
    picked_up_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_searching(self) -> bool:
        """Pending with nobody holding the offer."""
        return self.status == TripStatus.PENDING and self.driver_id is None

    def can_transition_to(self, new_status: TripStatus) -> bool:
        return new_status in VALID_TRANSITIONS[self.status]

    def check_transition(self, new_status: TripStatus) -> None:
        """Raise InvalidTransitionError unless new_status is a legal edge."""
        if self.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"Cannot transition from terminal state {self.status.value}",
                {"trip_id": self.trip_id, "status": self.status.value},
            )

        if not self.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Invalid transition from {self.status.value} to {new_status.value}",
                {
                    "trip_id": self.trip_id,
                    "status": self.status.value,
                    "requested": new_status.value,
                },
            )

    def check_driver_advance(self, new_status: TripStatus) -> None:
        """Validate a driver-initiated step along the linear lifecycle."""
        self.check_transition(new_status)
        if DRIVER_TRANSITIONS.get(self.status) != new_status:
            raise InvalidTransitionError(
                f"Drivers cannot move a trip from {self.status.value} to {new_status.value}",
                {
                    "trip_id": self.trip_id,
                    "status": self.status.value,
                    "requested": new_status.value,
                },
            )
