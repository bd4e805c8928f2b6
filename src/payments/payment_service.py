import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy.orm import sessionmaker

from core.exceptions import (
    ConflictError,
    NetworkError,
    ServiceUnavailableError,
    UpstreamFailureError,
    ValidationError,
)
from db.repositories import PaymentRepository, TripRepository
from db.repositories.trip_repository import PAYMENT_PAID
from db.schema import Payment
from db.transaction import transaction
from db.utils import utc_now
from dispatch_logging import log_trip_context
from metrics.prometheus_exporter import record_payment
from notifications.relay import NotificationRelay
from trips.trip_lifecycle import TripLifecycle

from .models import (
    STATUS_SUCCESSFUL,
    PaymentMethod,
    PaymentRecord,
    PaymentResult,
    mask_phone_number,
)
from .momo_client import MoMoClient

logger = logging.getLogger(__name__)

MSG_PAID_CLIENT = "Payment successful. Driver will now be paid."
MSG_PAID_DRIVER = "Client has completed the payment successfully."
MSG_FAILED_CLIENT = "Payment failed. Please try again."
MSG_FAILED_DRIVER = "Client attempted payment but it failed."


class PaymentService:
    """Collects the settled amount of a finished trip through mobile money.

    The amount always comes from the stored trip. An attempt first claims the
    trip's payment slot with a conditional update, so concurrent attempts on
    one trip reach the gateway at most once and a paid trip is never charged
    again. Gateway failures free the slot and surface as UpstreamFailureError.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Any],
        lifecycle: TripLifecycle,
        relay: NotificationRelay,
        momo_client: MoMoClient,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._lifecycle = lifecycle
        self._relay = relay
        self._momo = momo_client
        self._clock = clock

    def pay(
        self, trip_id: str, phone_number: str, payment_method: PaymentMethod = "mtn"
    ) -> PaymentResult:
        trip = self._lifecycle.get_trip(trip_id)
        if not trip.status.is_terminal or trip.amount <= 0:
            raise ValidationError(
                "Trip has no settled amount to pay",
                {"trip_id": trip_id, "status": trip.status.value, "amount": trip.amount},
            )
        if payment_method == "airtel":
            # TODO: integrate the Airtel Money collection API
            raise ValidationError(
                "Airtel Money payments are not supported yet",
                {"payment_method": payment_method},
            )

        with log_trip_context(trip_id, client_id=trip.client_id):
            self._claim(trip_id)
            try:
                reference_id, status = self._momo.request_to_pay(
                    phone_number, trip.amount, trip_id
                )
            except (NetworkError, ServiceUnavailableError) as e:
                self._release_claim(trip_id)
                record_payment(payment_method, "gateway_error")
                raise UpstreamFailureError(
                    "Payment gateway unavailable", {"trip_id": trip_id, "error": str(e)}
                ) from e
            except Exception:
                self._release_claim(trip_id)
                record_payment(payment_method, "gateway_error")
                raise

            success = status == STATUS_SUCCESSFUL
            notification_status = "success" if success else "error"

            with self._session_factory() as session:
                with transaction(session):
                    TripRepository(session).finish_payment(trip_id, paid=success)
                    PaymentRepository(session).create(
                        Payment(
                            reference_id=reference_id,
                            trip_id=trip_id,
                            phone_number=mask_phone_number(phone_number),
                            amount=trip.amount,
                            payment_method=payment_method,
                            status=status,
                            created_at=self._clock(),
                        )
                    )
                    self._relay.notify(
                        session,
                        "client",
                        trip.client_id,
                        trip_id,
                        MSG_PAID_CLIENT if success else MSG_FAILED_CLIENT,
                        notification_status,
                        amount=trip.amount,
                        reference_id=reference_id,
                    )
                    if trip.driver_id is not None:
                        self._relay.notify(
                            session,
                            "driver",
                            trip.driver_id,
                            trip_id,
                            MSG_PAID_DRIVER if success else MSG_FAILED_DRIVER,
                            notification_status,
                            amount=trip.amount,
                            reference_id=reference_id,
                        )
                self._relay.deliver_pending(session)

            record_payment(payment_method, "success" if success else "failed")
            logger.info(f"Payment {reference_id} for trip {trip_id}: {status}")
            return PaymentResult(
                success=success,
                status=status,
                reference_id=reference_id,
                amount=trip.amount,
                message=f"MTN MoMo payment {status.lower()}",
            )

    def close(self) -> None:
        self._momo.close()

    def list_payments(self, trip_id: str) -> list[PaymentRecord]:
        with self._session_factory() as session:
            rows = PaymentRepository(session).list_by_trip(trip_id)
            return [
                PaymentRecord(
                    reference_id=row.reference_id,
                    trip_id=row.trip_id,
                    phone_number_masked=row.phone_number,
                    amount=row.amount,
                    payment_method=row.payment_method,
                    status=row.status,
                    created_at=row.created_at,
                )
                for row in rows
            ]

    def _claim(self, trip_id: str) -> None:
        """Take the trip's payment slot before anything reaches the gateway.

        Raises:
            ConflictError: The trip is paid or another attempt is in flight
        """
        with self._session_factory() as session:
            with transaction(session):
                repo = TripRepository(session)
                if repo.claim_payment(trip_id):
                    return
                state = repo.get_payment_state(trip_id)

        if state == PAYMENT_PAID:
            raise ConflictError("Trip has already been paid", {"trip_id": trip_id})
        raise ConflictError(
            "A payment for this trip is already in progress", {"trip_id": trip_id}
        )

    def _release_claim(self, trip_id: str) -> None:
        with self._session_factory() as session:
            with transaction(session):
                TripRepository(session).finish_payment(trip_id, paid=False)
