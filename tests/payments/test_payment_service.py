"""Tests for trip payment."""

from unittest.mock import Mock

import pytest

from core.exceptions import (
    ConflictError,
    NotFoundError,
    UpstreamFailureError,
    ValidationError,
)
from payments.models import PaymentRequest, mask_phone_number
from payments.momo_client import MoMoClient, MoMoServiceError
from payments.payment_service import (
    MSG_FAILED_CLIENT,
    MSG_PAID_CLIENT,
    MSG_PAID_DRIVER,
    PaymentService,
)
from trip import TripStatus

PHONE = "250788123789"


@pytest.fixture
def momo_client():
    client = Mock(spec=MoMoClient)
    client.request_to_pay.return_value = ("ref-1", "SUCCESSFUL")
    return client


@pytest.fixture
def payment_service(session_factory, lifecycle, relay, momo_client, clock):
    return PaymentService(session_factory, lifecycle, relay, momo_client, clock=clock)


@pytest.fixture
def completed_trip(lifecycle, three_drivers, pickup, destination):
    trip = lifecycle.request_trip("c1", pickup, destination, distance_km=5.0)
    lifecycle.respond_to_offer(trip.trip_id, "d_near", accept=True)
    for status in (TripStatus.HEADING_TO_PICKUP, TripStatus.PICKED_UP, TripStatus.COMPLETED):
        trip = lifecycle.advance(trip.trip_id, "d_near", status)
    return trip


@pytest.mark.unit
class TestPay:
    def test_successful_payment(self, payment_service, momo_client, relay, completed_trip):
        result = payment_service.pay(completed_trip.trip_id, PHONE)

        assert result.success is True
        assert result.status == "SUCCESSFUL"
        assert result.reference_id == "ref-1"
        assert result.amount == 2500
        momo_client.request_to_pay.assert_called_once_with(PHONE, 2500, completed_trip.trip_id)

        client_notes = relay.list_for_recipient("client", "c1")
        paid = [n for n in client_notes if n.status == "success"]
        assert paid[0].message == MSG_PAID_CLIENT
        assert paid[0].reference_id == "ref-1"
        driver_notes = relay.list_for_recipient("driver", "d_near")
        assert MSG_PAID_DRIVER in [n.message for n in driver_notes]

    def test_payment_recorded_with_masked_phone(self, payment_service, completed_trip):
        payment_service.pay(completed_trip.trip_id, PHONE)

        (record,) = payment_service.list_payments(completed_trip.trip_id)
        assert record.phone_number_masked == "*********789"
        assert record.amount == 2500
        assert record.payment_method == "mtn"

    def test_amount_comes_from_cancellation_settlement(
        self, payment_service, momo_client, lifecycle, three_drivers, pickup, destination
    ):
        trip = lifecycle.request_trip("c1", pickup, destination, distance_km=5.0)
        lifecycle.respond_to_offer(trip.trip_id, "d_near", accept=True)
        lifecycle.cancel(trip.trip_id, "client")

        result = payment_service.pay(trip.trip_id, PHONE)
        assert result.amount == 875

    def test_failed_payment(self, payment_service, momo_client, relay, completed_trip):
        momo_client.request_to_pay.return_value = ("ref-2", "FAILED")

        result = payment_service.pay(completed_trip.trip_id, PHONE)

        assert result.success is False
        errors = [n for n in relay.list_for_recipient("client", "c1") if n.status == "error"]
        assert errors[0].message == MSG_FAILED_CLIENT
        # The trip can still be paid after a failed attempt
        momo_client.request_to_pay.return_value = ("ref-3", "SUCCESSFUL")
        assert payment_service.pay(completed_trip.trip_id, PHONE).success

    def test_trip_not_finished(
        self, payment_service, momo_client, lifecycle, three_drivers, pickup, destination
    ):
        trip = lifecycle.request_trip("c1", pickup, destination)
        with pytest.raises(ValidationError):
            payment_service.pay(trip.trip_id, PHONE)
        momo_client.request_to_pay.assert_not_called()

    def test_no_charge_cancellation(
        self, payment_service, lifecycle, three_drivers, pickup, destination
    ):
        trip = lifecycle.request_trip("c1", pickup, destination)
        lifecycle.cancel(trip.trip_id, "client")
        with pytest.raises(ValidationError, match="no settled amount"):
            payment_service.pay(trip.trip_id, PHONE)

    def test_airtel_not_supported(self, payment_service, momo_client, completed_trip):
        with pytest.raises(ValidationError, match="Airtel"):
            payment_service.pay(completed_trip.trip_id, PHONE, "airtel")
        momo_client.request_to_pay.assert_not_called()

    def test_already_paid(self, payment_service, completed_trip):
        payment_service.pay(completed_trip.trip_id, PHONE)
        with pytest.raises(ConflictError, match="already been paid"):
            payment_service.pay(completed_trip.trip_id, PHONE)

    def test_second_attempt_while_first_is_at_gateway(
        self, payment_service, momo_client, completed_trip
    ):
        """An attempt that starts while another is in flight never reaches the gateway."""
        conflicts = []

        def gateway_call(phone_number, amount, trip_id):
            try:
                payment_service.pay(trip_id, phone_number)
            except ConflictError as e:
                conflicts.append(e)
            return ("ref-1", "SUCCESSFUL")

        momo_client.request_to_pay.side_effect = gateway_call

        result = payment_service.pay(completed_trip.trip_id, PHONE)

        assert result.success is True
        assert momo_client.request_to_pay.call_count == 1
        assert len(conflicts) == 1
        assert "in progress" in conflicts[0].message
        statuses = [p.status for p in payment_service.list_payments(completed_trip.trip_id)]
        assert statuses == ["SUCCESSFUL"]

    def test_gateway_unavailable(self, payment_service, momo_client, completed_trip):
        momo_client.request_to_pay.side_effect = MoMoServiceError("Gateway server error: 503")

        with pytest.raises(UpstreamFailureError, match="unavailable"):
            payment_service.pay(completed_trip.trip_id, PHONE)
        assert payment_service.list_payments(completed_trip.trip_id) == []

        # The failed attempt frees the trip for another try
        momo_client.request_to_pay.side_effect = None
        assert payment_service.pay(completed_trip.trip_id, PHONE).success

    def test_gateway_rejection_propagates(self, payment_service, momo_client, completed_trip):
        momo_client.request_to_pay.side_effect = UpstreamFailureError("rejected")
        with pytest.raises(UpstreamFailureError, match="rejected"):
            payment_service.pay(completed_trip.trip_id, PHONE)

    def test_unknown_trip(self, payment_service):
        with pytest.raises(NotFoundError):
            payment_service.pay("missing", PHONE)


@pytest.mark.unit
class TestPaymentModels:
    def test_plus_prefix_stripped(self):
        assert PaymentRequest(phone_number="+250788123789").phone_number == PHONE

    @pytest.mark.parametrize("phone", ["12345", "25078812abc", "+" + "9" * 16])
    def test_invalid_phone(self, phone):
        with pytest.raises(ValueError):
            PaymentRequest(phone_number=phone)

    def test_default_method(self):
        assert PaymentRequest(phone_number=PHONE).payment_method == "mtn"

    def test_mask(self):
        assert mask_phone_number("250788123789") == "*********789"
        assert mask_phone_number("12") == "**"
