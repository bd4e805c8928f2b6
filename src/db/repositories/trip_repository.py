"""Trip repository with compare-and-swap state updates."""

import json
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from geo.distance import Coordinate
from trip import Place, TripOutcome, TripStatus
from trip import Trip as TripDomain

from ..schema import Trip
from ..utils import format_location, parse_location

TERMINAL_STATES = {TripStatus.COMPLETED.value, TripStatus.CANCELLED.value}

# Payment claim states on trips.payment_state; NULL means no attempt in flight.
PAYMENT_IN_FLIGHT = "in_flight"
PAYMENT_PAID = "paid"

# Sentinel: compare_and_set leaves driver_id out of the precondition.
ANY_DRIVER: Any = object()


class TripRepository:
    """Repository for trip CRUD operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, trip: TripDomain) -> None:
        """Insert a new trip row from its domain model."""
        row = Trip(
            trip_id=trip.trip_id,
            client_id=trip.client_id,
            driver_id=trip.driver_id,
            status=trip.status.value,
            outcome=trip.outcome.value if trip.outcome else None,
            pickup_location=format_location(*trip.pickup.coordinates.as_tuple()),
            pickup_address=trip.pickup.address,
            destination_location=format_location(*trip.destination.coordinates.as_tuple()),
            destination_address=trip.destination.address,
            distance_km=trip.distance_km,
            quoted_amount=trip.quoted_amount,
            amount=trip.amount,
            distance_traveled_km=trip.distance_traveled_km,
            rejected_driver_ids=json.dumps(trip.rejected_driver_ids),
            offer_notification_id=trip.offer_notification_id,
            offer_sequence=trip.offer_sequence,
            offer_sent_at=trip.offer_sent_at,
            searching_since=trip.searching_since,
            created_at=trip.created_at,
            updated_at=trip.updated_at or trip.created_at,
        )
        self.session.add(row)
        self.session.flush()

    def get(self, trip_id: str) -> TripDomain | None:
        """Get trip by ID, returning domain model."""
        trip = self.session.get(Trip, trip_id, populate_existing=True)
        if trip is None:
            return None
        return self._to_domain(trip)

    def compare_and_set(
        self,
        trip_id: str,
        expected_status: TripStatus | Iterable[TripStatus],
        expected_driver_id: str | None = ANY_DRIVER,
        **values: Any,
    ) -> bool:
        """Apply values only if the row still matches the expected state.

        expected_driver_id=None requires the trip to have no driver. Values are
        column names; enums, coordinates and id lists are converted to their
        stored form, SQL expressions are passed through.
        """
        if isinstance(expected_status, TripStatus):
            statuses = [expected_status.value]
        else:
            statuses = [s.value for s in expected_status]

        conditions = [Trip.trip_id == trip_id, Trip.status.in_(statuses)]
        if expected_driver_id is not ANY_DRIVER:
            if expected_driver_id is None:
                conditions.append(Trip.driver_id.is_(None))
            else:
                conditions.append(Trip.driver_id == expected_driver_id)

        stmt = (
            update(Trip)
            .where(*conditions)
            .values(**_to_columns(values))
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def claim_payment(self, trip_id: str) -> bool:
        """Mark a payment attempt in flight unless one is running or done."""
        stmt = (
            update(Trip)
            .where(Trip.trip_id == trip_id, Trip.payment_state.is_(None))
            .values(payment_state=PAYMENT_IN_FLIGHT)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def finish_payment(self, trip_id: str, paid: bool) -> None:
        """Close the in-flight attempt; an unpaid trip can be claimed again."""
        stmt = (
            update(Trip)
            .where(Trip.trip_id == trip_id, Trip.payment_state == PAYMENT_IN_FLIGHT)
            .values(payment_state=PAYMENT_PAID if paid else None)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)

    def get_payment_state(self, trip_id: str) -> str | None:
        return self.session.execute(
            select(Trip.payment_state).where(Trip.trip_id == trip_id)
        ).scalar()

    def list_by_client(self, client_id: str) -> list[TripDomain]:
        """List trips by client ID, newest first."""
        stmt = (
            select(Trip)
            .where(Trip.client_id == client_id)
            .order_by(Trip.created_at.desc())
        )
        result = self.session.execute(stmt)
        return [self._to_domain(t) for t in result.scalars().all()]

    def list_by_driver(self, driver_id: str) -> list[TripDomain]:
        """List trips by driver ID, newest first."""
        stmt = (
            select(Trip)
            .where(Trip.driver_id == driver_id)
            .order_by(Trip.created_at.desc())
        )
        result = self.session.execute(stmt)
        return [self._to_domain(t) for t in result.scalars().all()]

    def list_offers_older_than(self, cutoff: datetime) -> list[TripDomain]:
        """Pending trips whose outstanding offer was sent before cutoff."""
        stmt = (
            select(Trip)
            .where(
                Trip.status == TripStatus.PENDING.value,
                Trip.driver_id.is_not(None),
                Trip.offer_sent_at < cutoff,
            )
            .order_by(Trip.offer_sent_at.asc())
        )
        result = self.session.execute(stmt)
        return [self._to_domain(t) for t in result.scalars().all()]

    def list_searching(self) -> list[TripDomain]:
        """Pending trips that currently hold no driver, oldest first."""
        stmt = (
            select(Trip)
            .where(Trip.status == TripStatus.PENDING.value, Trip.driver_id.is_(None))
            .order_by(Trip.created_at.asc())
        )
        result = self.session.execute(stmt)
        return [self._to_domain(t) for t in result.scalars().all()]

    def count_in_flight(self) -> int:
        """Count trips in non-terminal states."""
        stmt = (
            select(func.count())
            .select_from(Trip)
            .where(Trip.status.notin_(TERMINAL_STATES))
        )
        return self.session.execute(stmt).scalar() or 0

    def sum_settled_for_driver(self, driver_id: str) -> float:
        """Total amount of the driver's terminal trips."""
        stmt = select(func.coalesce(func.sum(Trip.amount), 0.0)).where(
            Trip.driver_id == driver_id,
            Trip.status.in_(TERMINAL_STATES),
        )
        return float(self.session.execute(stmt).scalar() or 0.0)

    def _to_domain(self, trip: Trip) -> TripDomain:
        """Convert ORM model to domain model."""
        pickup_lat, pickup_lon = parse_location(trip.pickup_location)
        dest_lat, dest_lon = parse_location(trip.destination_location)

        driver_location = None
        if trip.driver_location:
            lat, lon = parse_location(trip.driver_location)
            driver_location = Coordinate(lat=lat, lon=lon)

        return TripDomain(
            trip_id=trip.trip_id,
            client_id=trip.client_id,
            driver_id=trip.driver_id,
            status=TripStatus(trip.status),
            outcome=TripOutcome(trip.outcome) if trip.outcome else None,
            pickup=Place(
                coordinates=Coordinate(lat=pickup_lat, lon=pickup_lon),
                address=trip.pickup_address,
            ),
            destination=Place(
                coordinates=Coordinate(lat=dest_lat, lon=dest_lon),
                address=trip.destination_address,
            ),
            distance_km=trip.distance_km,
            quoted_amount=trip.quoted_amount,
            amount=trip.amount,
            distance_traveled_km=trip.distance_traveled_km,
            driver_location=driver_location,
            rejected_driver_ids=json.loads(trip.rejected_driver_ids or "[]"),
            offer_notification_id=trip.offer_notification_id,
            offer_sequence=trip.offer_sequence,
            offer_sent_at=trip.offer_sent_at,
            searching_since=trip.searching_since,
            cancelled_by=trip.cancelled_by,
            cancellation_reason=trip.cancellation_reason,
            created_at=trip.created_at,
            accepted_at=trip.accepted_at,
            picked_up_at=trip.picked_up_at,
            completed_at=trip.completed_at,
            cancelled_at=trip.cancelled_at,
            updated_at=trip.updated_at,
        )


def _to_columns(values: dict[str, Any]) -> dict[str, Any]:
    columns: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, (TripStatus, TripOutcome)):
            value = value.value
        elif isinstance(value, Coordinate):
            value = format_location(value.lat, value.lon)
        elif key == "rejected_driver_ids" and isinstance(value, list):
            value = json.dumps(value)
        columns[key] = value
    return columns
