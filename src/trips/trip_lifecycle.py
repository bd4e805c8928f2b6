"""Trip lifecycle service: dispatch, offers, progress, settlement."""

import logging
import uuid
from collections.abc import Callable, Collection, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NoDriverAvailableError,
    NotFoundError,
    ValidationError,
)
from db.repositories import DriverRepository, TripRepository
from db.schema import Trip as TripRow
from db.transaction import transaction
from db.utils import utc_now
from dispatch_logging import log_trip_context
from fare import FareCalculator
from geo.distance import Coordinate, haversine_distance_km
from matching.dispatch_matcher import DispatchMatcher
from matching.driver_registry import DriverRegistry
from metrics.prometheus_exporter import (
    record_offer,
    record_trip_cancelled,
    record_trip_completed,
    record_trip_requested,
)
from notifications.relay import NotificationRelay, queue_publish
from pubsub.channels import CHANNEL_TRIP_UPDATES, TripUpdateMessage
from trip import (
    TRACKED_STATUSES,
    CancellationActor,
    Place,
    Trip,
    TripOutcome,
    TripStatus,
)

logger = logging.getLogger(__name__)

MSG_OFFER = "New trip request from {pickup} to {destination}"
MSG_ACCEPTED = (
    "Trip has been accepted, driver is on his way to pick you up at the pickup location."
)
MSG_DRIVER_REASSIGNED = "Trip was reassigned to another driver."
MSG_OFFER_EXPIRED = "Trip offer expired before you responded."
MSG_CLIENT_REASSIGNED = "Your trip is now assigned to another driver."
MSG_SEARCHING = "No drivers nearby right now. We keep searching for a driver."
MSG_HEADING_TO_PICKUP = "Driver is on the way to pick you up!"
MSG_PICKED_UP = "Driver has picked you up. Trip started!"
MSG_COMPLETED_CLIENT = "Trip completed. Please proceed to payment."
MSG_COMPLETED_DRIVER = "Trip completed. Fare due: {currency} {amount:.0f}."
MSG_CANCELLED_PENALTY = (
    "Trip cancelled. Distance traveled: {distance:.2f} km. "
    "You are charged {currency} {amount:.0f} including {percent:.0f}% pickup compensation."
)
MSG_CANCELLED_PENALTY_DRIVER = (
    "Trip cancelled by the {initiator}. You will receive {currency} {amount:.0f}."
)
MSG_CANCELLED_NO_CHARGE = "Trip cancelled. No charge applies."
MSG_CANCELLED_NO_CHARGE_DRIVER = "Trip request was cancelled."

_ADVANCE_MESSAGES = {
    TripStatus.HEADING_TO_PICKUP: MSG_HEADING_TO_PICKUP,
    TripStatus.PICKED_UP: MSG_PICKED_UP,
}


class TripLifecycle:
    """Owns every trip state change.

    Each operation runs in one database transaction. Trip rows are only
    changed through compare-and-swap updates on (status, driver_id); when a
    concurrent caller got there first the update matches no row and the
    operation raises ConflictError, rolling back everything it wrote.
    Notifications and trip updates are published after the commit.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Any],
        registry: DriverRegistry,
        matcher: DispatchMatcher,
        fare_calculator: FareCalculator,
        relay: NotificationRelay,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._matcher = matcher
        self._fare = fare_calculator
        self._relay = relay
        self._clock = clock

    @property
    def currency(self) -> str:
        return self._fare.currency

    # --- Commands ---

    def request_trip(
        self,
        client_id: str,
        pickup: Place,
        destination: Place,
        distance_km: float | None = None,
    ) -> Trip:
        """Create a trip and offer it to the nearest available driver.

        distance_km defaults to the great-circle distance between pickup and
        destination when the caller has no routed distance.

        Raises:
            NoDriverAvailableError: No eligible driver; no trip is created
        """
        if not client_id:
            raise ValidationError("client_id is required")
        if distance_km is None:
            distance_km = haversine_distance_km(
                *pickup.coordinates.as_tuple(), *destination.coordinates.as_tuple()
            )
        quoted_amount = self._fare.quote(distance_km)
        trip_id = str(uuid.uuid4())

        with log_trip_context(trip_id, client_id=client_id):
            try:
                with self._unit_of_work() as session:
                    now = self._clock()
                    driver_id = self._claim_nearest(
                        session, trip_id, pickup.coordinates, exclude=()
                    )
                    trip = Trip(
                        trip_id=trip_id,
                        client_id=client_id,
                        driver_id=driver_id,
                        status=TripStatus.PENDING,
                        pickup=pickup,
                        destination=destination,
                        distance_km=distance_km,
                        quoted_amount=quoted_amount,
                        amount=quoted_amount,
                        offer_sequence=1,
                        offer_sent_at=now,
                        created_at=now,
                        updated_at=now,
                    )
                    trip.offer_notification_id = self._send_offer(session, trip, driver_id)
                    TripRepository(session).create(trip)
                    self._queue_trip_update(session, trip)
            except NoDriverAvailableError:
                record_trip_requested("no_driver")
                logger.info("No driver available for trip request")
                raise

            record_trip_requested("matched")
            record_offer("sent")
            logger.info(f"Trip {trip_id} offered to driver {driver_id}")
            return trip

    def respond_to_offer(self, trip_id: str, driver_id: str, accept: bool) -> Trip:
        """Accept or reject the offer currently held by driver_id.

        A response from a driver who no longer holds the offer, or a second
        response to an already resolved offer, raises ConflictError and
        changes nothing.
        """
        with log_trip_context(trip_id, driver_id=driver_id):
            with self._unit_of_work() as session:
                repo = TripRepository(session)
                trip = self._load(repo, trip_id)
                if trip.status != TripStatus.PENDING or trip.driver_id != driver_id:
                    raise ConflictError(
                        "Offer is no longer open for this driver",
                        {
                            "trip_id": trip_id,
                            "driver_id": driver_id,
                            "status": trip.status.value,
                        },
                    )

                if accept:
                    updated = self._accept(session, trip, driver_id)
                else:
                    updated = self._release_and_reoffer(session, trip, driver_id, expired=False)

            record_offer("accepted" if accept else "rejected")
            logger.info(f"Driver {driver_id} {'accepted' if accept else 'rejected'} trip {trip_id}")
            return updated

    def expire_offer(self, trip_id: str, driver_id: str) -> Trip:
        """Treat an unanswered offer as rejected and move on to the next driver."""
        with log_trip_context(trip_id, driver_id=driver_id):
            with self._unit_of_work() as session:
                repo = TripRepository(session)
                trip = self._load(repo, trip_id)
                if trip.status != TripStatus.PENDING or trip.driver_id != driver_id:
                    raise ConflictError(
                        "Offer already answered",
                        {"trip_id": trip_id, "driver_id": driver_id},
                    )
                updated = self._release_and_reoffer(session, trip, driver_id, expired=True)

            record_offer("expired")
            logger.info(f"Offer to driver {driver_id} for trip {trip_id} expired")
            return updated

    def retry_searching(self, trip_id: str) -> Trip:
        """Re-run matching for a trip that holds no driver.

        Trips that are not searching are returned unchanged.
        """
        with log_trip_context(trip_id):
            with self._unit_of_work() as session:
                repo = TripRepository(session)
                trip = self._load(repo, trip_id)
                if not trip.is_searching:
                    return trip
                driver_id = self._offer_to_next(session, trip, notify_searching=False)
                updated = self._load(repo, trip_id)
                if driver_id is not None:
                    self._queue_trip_update(session, updated)

            if driver_id is not None:
                record_offer("sent")
                logger.info(f"Searching trip {trip_id} offered to driver {driver_id}")
            return updated

    def advance(self, trip_id: str, driver_id: str, next_status: TripStatus) -> Trip:
        """Move an accepted trip one step along its driver-controlled path.

        Raises:
            InvalidTransitionError: next_status is not the next step
            ConflictError: driver_id is not the trip's driver, or the trip
                changed concurrently
        """
        with log_trip_context(trip_id, driver_id=driver_id):
            with self._unit_of_work() as session:
                repo = TripRepository(session)
                trip = self._load(repo, trip_id)
                trip.check_driver_advance(next_status)
                if trip.driver_id != driver_id:
                    raise ConflictError(
                        "Trip is assigned to another driver",
                        {"trip_id": trip_id, "driver_id": driver_id},
                    )

                now = self._clock()
                values: dict[str, Any] = {"status": next_status, "updated_at": now}
                if next_status == TripStatus.PICKED_UP:
                    values["picked_up_at"] = now
                elif next_status == TripStatus.COMPLETED:
                    values["amount"] = self._fare.quote(trip.distance_km)
                    values["outcome"] = TripOutcome.FARE_COLLECTED
                    values["completed_at"] = now

                self._swap(repo, trip, **values)

                if next_status == TripStatus.COMPLETED:
                    self._registry.release(session, driver_id, trip_id)
                    amount = values["amount"]
                    self._relay.notify(
                        session,
                        "client",
                        trip.client_id,
                        trip_id,
                        MSG_COMPLETED_CLIENT,
                        amount=amount,
                    )
                    self._relay.notify(
                        session,
                        "driver",
                        driver_id,
                        trip_id,
                        MSG_COMPLETED_DRIVER.format(currency=self._fare.currency, amount=amount),
                        amount=amount,
                    )
                else:
                    self._relay.notify(
                        session,
                        "client",
                        trip.client_id,
                        trip_id,
                        _ADVANCE_MESSAGES[next_status],
                    )

                updated = self._load(repo, trip_id)
                self._queue_trip_update(session, updated)

            if next_status == TripStatus.COMPLETED:
                record_trip_completed()
            logger.info(f"Trip {trip_id} moved to {next_status.value}")
            return updated

    def update_driver_location(
        self, trip_id: str, coordinate: Coordinate, driver_id: str | None = None
    ) -> Trip:
        """Record the driver's position on an active trip (last write wins).

        While the client is on board, the great-circle distance from the
        previous position is added to distance_traveled_km.
        """
        with self._unit_of_work() as session:
            repo = TripRepository(session)
            trip = self._load(repo, trip_id)
            if trip.status not in TRACKED_STATUSES:
                raise InvalidTransitionError(
                    f"Driver location is not tracked in status {trip.status.value}",
                    {"trip_id": trip_id, "status": trip.status.value},
                )
            if driver_id is not None and driver_id != trip.driver_id:
                raise ConflictError(
                    "Trip is assigned to another driver",
                    {"trip_id": trip_id, "driver_id": driver_id},
                )

            now = self._clock()
            values: dict[str, Any] = {"driver_location": coordinate, "updated_at": now}
            if trip.status == TripStatus.PICKED_UP and trip.driver_location is not None:
                step_km = haversine_distance_km(
                    *trip.driver_location.as_tuple(), *coordinate.as_tuple()
                )
                values["distance_traveled_km"] = TripRow.distance_traveled_km + step_km

            self._swap(repo, trip, **values)
            if trip.driver_id is not None:
                DriverRepository(session).update_location(
                    trip.driver_id, coordinate.lat, coordinate.lon, now
                )

            updated = self._load(repo, trip_id)
            self._queue_trip_update(session, updated)
        return updated

    def cancel(
        self,
        trip_id: str,
        initiator: CancellationActor,
        reason: str | None = None,
    ) -> Trip:
        """Cancel a non-terminal trip and settle it.

        Before a driver accepted, the trip closes with no charge. Afterwards
        the cancellation settlement is charged and the driver compensated.
        """
        with log_trip_context(trip_id, cancelled_by=initiator):
            with self._unit_of_work() as session:
                repo = TripRepository(session)
                trip = self._load(repo, trip_id)
                trip.check_transition(TripStatus.CANCELLED)

                now = self._clock()
                if trip.status == TripStatus.PENDING:
                    outcome = TripOutcome.CANCELLED_NO_CHARGE
                    amount: float = 0
                else:
                    outcome = TripOutcome.COMPLETED_WITH_PENALTY
                    amount = self._fare.settle_cancellation(
                        trip.distance_traveled_km, trip.quoted_amount
                    )

                self._swap(
                    repo,
                    trip,
                    status=TripStatus.CANCELLED,
                    outcome=outcome,
                    amount=amount,
                    cancelled_by=initiator,
                    cancellation_reason=reason,
                    cancelled_at=now,
                    updated_at=now,
                )

                if trip.driver_id is not None:
                    self._registry.release(session, trip.driver_id, trip_id)
                if trip.status == TripStatus.PENDING and trip.offer_notification_id:
                    self._relay.mark_resolved(session, trip.offer_notification_id, "rejected")

                self._notify_cancellation(session, trip, initiator, outcome, amount)
                updated = self._load(repo, trip_id)
                self._queue_trip_update(session, updated)

            record_trip_cancelled(initiator, outcome.value)
            logger.info(f"Trip {trip_id} cancelled by {initiator} ({outcome.value})")
            return updated

    # --- Queries ---

    def get_trip(self, trip_id: str) -> Trip:
        with self._session_factory() as session:
            return self._load(TripRepository(session), trip_id)

    def list_client_trips(self, client_id: str) -> list[Trip]:
        with self._session_factory() as session:
            return TripRepository(session).list_by_client(client_id)

    def list_driver_trips(self, driver_id: str) -> list[Trip]:
        with self._session_factory() as session:
            return TripRepository(session).list_by_driver(driver_id)

    def driver_earnings(self, driver_id: str) -> float:
        """Sum of the settled amounts of the driver's finished trips."""
        self._registry.get(driver_id)
        with self._session_factory() as session:
            return TripRepository(session).sum_settled_for_driver(driver_id)

    def list_expired_offers(self, cutoff: datetime) -> list[Trip]:
        with self._session_factory() as session:
            return TripRepository(session).list_offers_older_than(cutoff)

    def list_searching_trips(self) -> list[Trip]:
        with self._session_factory() as session:
            return TripRepository(session).list_searching()

    def count_in_flight(self) -> int:
        with self._session_factory() as session:
            return TripRepository(session).count_in_flight()

    # --- Internals ---

    @contextmanager
    def _unit_of_work(self) -> Iterator[Session]:
        with self._session_factory() as session:
            with transaction(session):
                yield session
            self._relay.deliver_pending(session)

    def _load(self, repo: TripRepository, trip_id: str) -> Trip:
        trip = repo.get(trip_id)
        if trip is None:
            raise NotFoundError(f"Trip {trip_id} not found", {"trip_id": trip_id})
        return trip

    def _swap(self, repo: TripRepository, trip: Trip, **values: Any) -> None:
        if not repo.compare_and_set(trip.trip_id, trip.status, trip.driver_id, **values):
            raise ConflictError(
                "Trip changed concurrently",
                {"trip_id": trip.trip_id, "expected_status": trip.status.value},
            )

    def _claim_nearest(
        self,
        session: Session,
        trip_id: str,
        pickup: Coordinate,
        exclude: Collection[str],
    ) -> str:
        """Claim the nearest driver that is still free, walking down the ranking."""
        for driver_id, distance in self._matcher.rank(pickup, exclude, session=session):
            if self._registry.claim(session, driver_id, trip_id):
                logger.debug(f"Claimed driver {driver_id} at {distance:.3f}")
                return driver_id
            logger.debug(f"Driver {driver_id} was claimed concurrently, trying next")
        raise NoDriverAvailableError(
            "No drivers nearby, try again",
            {"trip_id": trip_id, "excluded": sorted(exclude)},
        )

    def _send_offer(self, session: Session, trip: Trip, driver_id: str) -> str:
        return self._relay.notify(
            session,
            "driver",
            driver_id,
            trip.trip_id,
            MSG_OFFER.format(
                pickup=trip.pickup.address or _format_point(trip.pickup.coordinates),
                destination=trip.destination.address
                or _format_point(trip.destination.coordinates),
            ),
            "pending",
            amount=trip.quoted_amount,
            pickup_address=trip.pickup.address,
            destination_address=trip.destination.address,
        )

    def _accept(self, session: Session, trip: Trip, driver_id: str) -> Trip:
        repo = TripRepository(session)
        now = self._clock()
        self._swap(repo, trip, status=TripStatus.ACCEPTED, accepted_at=now, updated_at=now)
        if trip.offer_notification_id:
            self._relay.mark_resolved(session, trip.offer_notification_id, "accepted")
        self._relay.notify(
            session,
            "client",
            trip.client_id,
            trip.trip_id,
            MSG_ACCEPTED,
            amount=trip.quoted_amount,
        )
        updated = self._load(repo, trip.trip_id)
        self._queue_trip_update(session, updated)
        return updated

    def _release_and_reoffer(
        self, session: Session, trip: Trip, driver_id: str, expired: bool
    ) -> Trip:
        """Drop driver_id from the trip, exclude them, and offer to the next driver."""
        repo = TripRepository(session)
        now = self._clock()
        rejected = list(trip.rejected_driver_ids)
        if driver_id not in rejected:
            rejected.append(driver_id)

        self._swap(
            repo,
            trip,
            driver_id=None,
            rejected_driver_ids=rejected,
            offer_notification_id=None,
            offer_sent_at=None,
            searching_since=now,
            updated_at=now,
        )
        if trip.offer_notification_id:
            self._relay.mark_resolved(session, trip.offer_notification_id, "rejected")
        self._registry.release(session, driver_id, trip.trip_id)

        searching = trip.model_copy(
            update={
                "driver_id": None,
                "rejected_driver_ids": rejected,
                "offer_notification_id": None,
                "offer_sent_at": None,
                "searching_since": now,
            }
        )
        next_driver = self._offer_to_next(session, searching, notify_searching=True)

        self._relay.notify(
            session,
            "driver",
            driver_id,
            trip.trip_id,
            MSG_OFFER_EXPIRED if expired else MSG_DRIVER_REASSIGNED,
            amount=trip.quoted_amount,
        )
        updated = self._load(repo, trip.trip_id)
        self._queue_trip_update(session, updated)
        return updated

    def _offer_to_next(
        self, session: Session, trip: Trip, notify_searching: bool
    ) -> str | None:
        """Claim and offer the nearest non-excluded driver for a searching trip.

        Returns the new driver id, or None when the trip stays searching.
        """
        try:
            driver_id = self._claim_nearest(
                session, trip.trip_id, trip.pickup.coordinates, trip.rejected_driver_ids
            )
        except NoDriverAvailableError:
            if notify_searching:
                self._relay.notify(
                    session, "client", trip.client_id, trip.trip_id, MSG_SEARCHING
                )
            logger.info(f"Trip {trip.trip_id} is searching for a driver")
            return None

        now = self._clock()
        offer_id = self._send_offer(session, trip, driver_id)
        repo = TripRepository(session)
        if not repo.compare_and_set(
            trip.trip_id,
            TripStatus.PENDING,
            None,
            driver_id=driver_id,
            offer_notification_id=offer_id,
            offer_sent_at=now,
            offer_sequence=TripRow.offer_sequence + 1,
            searching_since=None,
            updated_at=now,
        ):
            raise ConflictError("Trip changed concurrently", {"trip_id": trip.trip_id})

        if trip.rejected_driver_ids:
            self._relay.notify(
                session,
                "client",
                trip.client_id,
                trip.trip_id,
                MSG_CLIENT_REASSIGNED,
                amount=trip.quoted_amount,
            )
        return driver_id

    def _notify_cancellation(
        self,
        session: Session,
        trip: Trip,
        initiator: CancellationActor,
        outcome: TripOutcome,
        amount: float,
    ) -> None:
        currency = self._fare.currency
        if outcome == TripOutcome.COMPLETED_WITH_PENALTY:
            client_message = MSG_CANCELLED_PENALTY.format(
                distance=trip.distance_traveled_km,
                currency=currency,
                amount=amount,
                percent=self._fare.pickup_loss_fraction * 100,
            )
            driver_message = MSG_CANCELLED_PENALTY_DRIVER.format(
                initiator=initiator, currency=currency, amount=amount
            )
        else:
            client_message = MSG_CANCELLED_NO_CHARGE
            driver_message = MSG_CANCELLED_NO_CHARGE_DRIVER

        self._relay.notify(
            session, "client", trip.client_id, trip.trip_id, client_message, amount=amount
        )
        if trip.driver_id is not None:
            self._relay.notify(
                session, "driver", trip.driver_id, trip.trip_id, driver_message, amount=amount
            )

    def _queue_trip_update(self, session: Session, trip: Trip) -> None:
        message = TripUpdateMessage(
            trip_id=trip.trip_id,
            event_type=trip.status.to_event_type(),
            status=trip.status.value,
            client_id=trip.client_id,
            driver_id=trip.driver_id,
            amount=trip.amount,
            driver_location=trip.driver_location.as_tuple() if trip.driver_location else None,
            timestamp=self._clock().isoformat(),
        )
        queue_publish(session, CHANNEL_TRIP_UPDATES, message.model_dump())


def _format_point(coordinate: Coordinate) -> str:
    return f"({coordinate.lat:.5f}, {coordinate.lon:.5f})"
