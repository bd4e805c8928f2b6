import pytest

from core.exceptions import UpstreamFailureError

PAYMENT = {"phone_number": "250788123456"}


@pytest.fixture
def drivers(api_driver):
    api_driver("d_near", -1.9370, 30.0619)
    api_driver("d_far", -1.9150, 30.0619)


def _post(client, path, body, headers):
    return client.post(path, json=body, headers=headers)


@pytest.mark.unit
class TestTripRequest:
    def test_request_offers_nearest(self, test_client, auth_headers, drivers, trip_payload):
        response = _post(test_client, "/trips", trip_payload, auth_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["driver_id"] == "d_near"
        assert body["quoted_amount"] == 2500
        assert body["pickup"]["address"] == "Kigali Convention Centre"

    def test_no_driver_returns_503(self, test_client, auth_headers, trip_payload):
        response = _post(test_client, "/trips", trip_payload, auth_headers)

        assert response.status_code == 503
        assert response.json()["detail"] == "No drivers nearby, try again"
        listed = test_client.get("/clients/c1/trips", headers=auth_headers)
        assert listed.json() == []

    def test_invalid_payload(self, test_client, auth_headers, trip_payload):
        trip_payload["pickup"]["coordinates"]["lat"] = 200
        assert _post(test_client, "/trips", trip_payload, auth_headers).status_code == 422

    def test_unknown_trip(self, test_client, auth_headers):
        response = test_client.get("/trips/missing", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"


@pytest.mark.unit
class TestTripFlow:
    def test_full_trip_and_payment(self, test_client, auth_headers, drivers, trip_payload):
        trip_id = _post(test_client, "/trips", trip_payload, auth_headers).json()["trip_id"]

        response = _post(
            test_client,
            f"/trips/{trip_id}/offer-response",
            {"driver_id": "d_near", "accept": True},
            auth_headers,
        )
        assert response.json()["status"] == "accepted"

        for status in ("heading_to_pickup", "picked_up", "completed"):
            response = _post(
                test_client,
                f"/trips/{trip_id}/advance",
                {"driver_id": "d_near", "status": status},
                auth_headers,
            )
            assert response.status_code == 200
            assert response.json()["status"] == status

        assert response.json()["outcome"] == "fare_collected"
        assert response.json()["amount"] == 2500

        payment = _post(
            test_client,
            f"/trips/{trip_id}/payment",
            {"phone_number": "+250788123456"},
            auth_headers,
        )
        assert payment.status_code == 200
        assert payment.json()["success"] is True
        assert payment.json()["amount"] == 2500

        records = test_client.get(f"/trips/{trip_id}/payments", headers=auth_headers).json()
        assert records[0]["phone_number_masked"] == "*********456"

        earnings = test_client.get("/drivers/d_near/earnings", headers=auth_headers).json()
        assert earnings["total"] == 2500

    def test_reject_reassigns(self, test_client, auth_headers, drivers, trip_payload):
        trip_id = _post(test_client, "/trips", trip_payload, auth_headers).json()["trip_id"]

        response = _post(
            test_client,
            f"/trips/{trip_id}/offer-response",
            {"driver_id": "d_near", "accept": False},
            auth_headers,
        )
        assert response.json()["driver_id"] == "d_far"
        assert response.json()["rejected_driver_ids"] == ["d_near"]

    def test_stale_response_conflicts(self, test_client, auth_headers, drivers, trip_payload):
        trip_id = _post(test_client, "/trips", trip_payload, auth_headers).json()["trip_id"]
        body = {"driver_id": "d_near", "accept": True}
        _post(test_client, f"/trips/{trip_id}/offer-response", body, auth_headers)

        response = _post(test_client, f"/trips/{trip_id}/offer-response", body, auth_headers)
        assert response.status_code == 409
        assert response.json()["error"] == "ConflictError"

    def test_invalid_transition(self, test_client, auth_headers, drivers, trip_payload):
        trip_id = _post(test_client, "/trips", trip_payload, auth_headers).json()["trip_id"]
        response = _post(
            test_client,
            f"/trips/{trip_id}/advance",
            {"driver_id": "d_near", "status": "completed"},
            auth_headers,
        )
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidTransitionError"

    def test_driver_location_and_cancel(self, test_client, auth_headers, drivers, trip_payload):
        trip_id = _post(test_client, "/trips", trip_payload, auth_headers).json()["trip_id"]
        _post(
            test_client,
            f"/trips/{trip_id}/offer-response",
            {"driver_id": "d_near", "accept": True},
            auth_headers,
        )
        _post(
            test_client,
            f"/trips/{trip_id}/advance",
            {"driver_id": "d_near", "status": "heading_to_pickup"},
            auth_headers,
        )

        response = test_client.put(
            f"/trips/{trip_id}/driver-location",
            json={"location": {"lat": -1.9400, "lon": 30.0619}, "driver_id": "d_near"},
            headers=auth_headers,
        )
        assert response.json()["driver_location"] == {"lat": -1.94, "lon": 30.0619}

        response = _post(
            test_client, f"/trips/{trip_id}/cancel", {"initiator": "client"}, auth_headers
        )
        assert response.json()["status"] == "cancelled"
        assert response.json()["outcome"] == "completed_with_penalty"
        assert response.json()["amount"] == 875

    def test_cancel_requires_known_initiator(
        self, test_client, auth_headers, drivers, trip_payload
    ):
        trip_id = _post(test_client, "/trips", trip_payload, auth_headers).json()["trip_id"]
        response = _post(
            test_client, f"/trips/{trip_id}/cancel", {"initiator": "admin"}, auth_headers
        )
        assert response.status_code == 422


@pytest.mark.unit
class TestPaymentEndpoint:
    def test_unfinished_trip_rejected(self, test_client, auth_headers, drivers, trip_payload):
        trip_id = _post(test_client, "/trips", trip_payload, auth_headers).json()["trip_id"]
        response = _post(
            test_client, f"/trips/{trip_id}/payment", PAYMENT, auth_headers
        )
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_invalid_phone(self, test_client, auth_headers):
        response = _post(
            test_client, "/trips/t1/payment", {"phone_number": "not-a-phone"}, auth_headers
        )
        assert response.status_code == 422

    def test_gateway_failure_returns_502(
        self, test_client, auth_headers, drivers, trip_payload, mock_momo_client
    ):
        trip_id = _post(test_client, "/trips", trip_payload, auth_headers).json()["trip_id"]
        _post(
            test_client,
            f"/trips/{trip_id}/offer-response",
            {"driver_id": "d_near", "accept": True},
            auth_headers,
        )
        _post(test_client, f"/trips/{trip_id}/cancel", {"initiator": "driver"}, auth_headers)
        mock_momo_client.request_to_pay.side_effect = UpstreamFailureError("gateway down")

        response = _post(
            test_client, f"/trips/{trip_id}/payment", PAYMENT, auth_headers
        )
        assert response.status_code == 502
        assert response.json()["error"] == "UpstreamFailureError"
