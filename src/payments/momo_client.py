"""MTN MoMo collection API client."""

import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

import httpx
from opentelemetry import trace

from core.exceptions import (
    ConfigurationError,
    NetworkError,
    ServiceUnavailableError,
    UpstreamFailureError,
)
from core.retry import RetryConfig, with_retry_sync
from metrics.prometheus_exporter import observe_latency, record_error
from settings import PaymentSettings

logger = logging.getLogger(__name__)

_tracer = trace.get_tracer(__name__)

PAYER_MESSAGE = "Trip payment"
PAYEE_NOTE = "Trip fare"


class MoMoTimeoutError(NetworkError):
    """Gateway request timeout. Inherits from NetworkError (retryable)."""

    pass


class MoMoServiceError(ServiceUnavailableError):
    """Gateway 5xx response. Inherits from ServiceUnavailableError (retryable)."""

    pass


class MoMoClient:
    """Three-step collection flow: token, request-to-pay, status check.

    Transient failures (timeouts, connection errors, 5xx) are retried with
    exponential backoff; anything the gateway rejects surfaces as
    UpstreamFailureError.
    """

    def __init__(
        self,
        settings: PaymentSettings,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.Client(
            base_url=settings.base_url, timeout=settings.timeout_seconds
        )
        self._sleep = sleep
        # UpstreamFailureError is a rejection and is not retried
        self._retry = retry_config or RetryConfig(
            max_attempts=settings.max_retries,
            retryable_exceptions=(NetworkError, ServiceUnavailableError),
        )

    def request_to_pay(
        self, phone_number: str, amount: float, external_id: str
    ) -> tuple[str, str]:
        """Collect amount from phone_number.

        Returns:
            (reference_id, gateway status) after the configured poll delay
        """
        self._check_credentials()
        with _tracer.start_as_current_span("momo.request_to_pay") as span:
            span.set_attribute("payment.external_id", external_id)
            token = self._with_retry(self._fetch_token, "momo token")
            reference_id = str(uuid.uuid4())
            payload = {
                "amount": _format_amount(amount),
                "currency": self._settings.currency,
                "externalId": external_id,
                "payer": {"partyIdType": "MSISDN", "partyId": phone_number},
                "payerMessage": PAYER_MESSAGE,
                "payeeNote": PAYEE_NOTE,
            }
            self._with_retry(
                lambda: self._send(
                    "POST",
                    "/collection/v1_0/requesttopay",
                    headers={**self._auth_headers(token), "X-Reference-Id": reference_id},
                    json=payload,
                ),
                "momo request-to-pay",
            )
            self._sleep(self._settings.status_poll_delay_seconds)
            status = self.get_status(token, reference_id)
            span.set_attribute("payment.status", status)
            logger.info(f"Payment {reference_id} for {external_id} returned {status}")
            return reference_id, status

    def get_status(self, token: str, reference_id: str) -> str:
        response = self._with_retry(
            lambda: self._send(
                "GET",
                f"/collection/v1_0/requesttopay/{reference_id}",
                headers=self._auth_headers(token),
            ),
            "momo status",
        )
        status = response.json().get("status")
        if not status:
            raise UpstreamFailureError(
                "Gateway returned no payment status", {"reference_id": reference_id}
            )
        return str(status)

    def close(self) -> None:
        self._client.close()

    def _fetch_token(self) -> str:
        response = self._send(
            "POST",
            "/collection/token/",
            auth=(self._settings.user_id, self._settings.api_key),
            headers={"Ocp-Apim-Subscription-Key": self._settings.subscription_key},
        )
        token = response.json().get("access_token")
        if not token:
            raise UpstreamFailureError("Gateway returned no access token")
        return str(token)

    def _auth_headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "X-Target-Environment": self._settings.target_environment,
            "Ocp-Apim-Subscription-Key": self._settings.subscription_key,
        }

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        start_time = time.perf_counter()
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            record_error("gateway", "timeout")
            raise MoMoTimeoutError(
                f"Gateway request timed out after {self._settings.timeout_seconds}s"
            ) from e
        except httpx.TransportError as e:
            record_error("gateway", "network_error")
            raise MoMoServiceError(f"Network error: {e}") from e
        finally:
            observe_latency("gateway", (time.perf_counter() - start_time) * 1000)

        if response.status_code >= 500:
            record_error("gateway", f"server_error_{response.status_code}")
            raise MoMoServiceError(f"Gateway server error: {response.status_code}")
        if response.status_code >= 400:
            record_error("gateway", f"client_error_{response.status_code}")
            raise UpstreamFailureError(
                f"Gateway rejected {method} {url}: {response.status_code}",
                {"status_code": response.status_code, "body": response.text[:200]},
            )
        return response

    def _with_retry(self, operation: Callable[[], Any], name: str) -> Any:
        return with_retry_sync(operation, self._retry, operation_name=name)

    def _check_credentials(self) -> None:
        missing = [
            name
            for name, value in (
                ("MOMO_USER_ID", self._settings.user_id),
                ("MOMO_API_KEY", self._settings.api_key),
                ("MOMO_SUBSCRIPTION_KEY", self._settings.subscription_key),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Payment gateway credentials not provided: {', '.join(missing)}"
            )


def _format_amount(amount: float) -> str:
    return str(int(amount)) if float(amount).is_integer() else f"{amount:.2f}"
