"""Order service client for reading orders and recording QR payments."""

import uuid
from typing import Any, Optional

import httpx
import structlog

from qr_payment.clients.base import OrderGateway
from qr_payment.domain.exceptions import (
    OrderNotFoundError,
    OrderServiceError,
    OrderServiceUnavailableError,
)
from qr_payment.domain.order import OrderSnapshot, PaymentRecord

logger = structlog.get_logger(__name__)


class OrderServiceClient(OrderGateway):
    """
    Client for the order service REST API.

    Handles service-to-service authentication and request correlation.
    Every call carries a fresh X-Request-ID so the order service logs can be
    joined with this service's audit trail.
    """

    def __init__(
        self,
        base_url: str,
        service_auth_token: str,
        timeout_seconds: float = 5.0,
        http_client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the order service client.

        Args:
            base_url: Base URL of the order service (e.g., "http://localhost:8081")
            service_auth_token: Service authentication token for X-Service-Auth header
            timeout_seconds: Request timeout in seconds (default: 5.0)
            http_client: Optional preconfigured httpx client (tests inject a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        self.service_auth_token = service_auth_token
        self.timeout_seconds = timeout_seconds
        self.http_client = http_client or httpx.Client(timeout=timeout_seconds)

        logger.info(
            "order_service_client_initialized",
            base_url=base_url,
            timeout_seconds=timeout_seconds,
        )

    def close(self) -> None:
        """Close the HTTP client connection pool."""
        self.http_client.close()

    def get_order(self, order_id: int) -> OrderSnapshot:
        """
        Fetch an order from the order service.

        Raises:
            OrderNotFoundError: 404 - order doesn't exist
            OrderServiceUnavailableError: 5xx, timeout or network error
            OrderServiceError: Any other unexpected response
        """
        payload = self._request("GET", f"/api/orders/{order_id}", order_id=order_id)
        return self._parse_order(payload, order_id)

    def record_payment(self, payment: PaymentRecord) -> OrderSnapshot:
        """
        Record a confirmed QR payment on the order.

        Raises:
            OrderNotFoundError: 404 - order doesn't exist
            OrderServiceError: 4xx - order service rejected the payment
            OrderServiceUnavailableError: 5xx, timeout or network error
        """
        payload = self._request(
            "POST",
            f"/api/orders/{payment.order_id}/payment",
            order_id=payment.order_id,
            json=payment.to_dict(),
        )
        return self._parse_order(payload, payment.order_id)

    def _request(
        self,
        method: str,
        path: str,
        order_id: int,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        correlation_id = str(uuid.uuid4())
        url = f"{self.base_url}{path}"

        logger.info(
            "order_service_request",
            method=method,
            order_id=order_id,
            correlation_id=correlation_id,
            url=url,
        )

        try:
            response = self.http_client.request(
                method,
                url,
                headers={
                    "X-Service-Auth": self.service_auth_token,
                    "X-Request-ID": correlation_id,
                },
                json=json,
            )
        except httpx.TimeoutException as e:
            logger.error(
                "order_service_timeout",
                order_id=order_id,
                correlation_id=correlation_id,
                error=str(e),
            )
            raise OrderServiceUnavailableError("Order service timeout") from e
        except httpx.RequestError as e:
            # Network errors, connection errors, etc.
            logger.error(
                "order_service_request_error",
                order_id=order_id,
                correlation_id=correlation_id,
                error=str(e),
            )
            raise OrderServiceUnavailableError(f"Order service request error: {e}") from e

        if response.status_code == 404:
            logger.warning(
                "order_not_found",
                order_id=order_id,
                correlation_id=correlation_id,
            )
            raise OrderNotFoundError(f"Order {order_id} not found")

        if response.status_code >= 500:
            logger.error(
                "order_service_error",
                status_code=response.status_code,
                order_id=order_id,
                correlation_id=correlation_id,
            )
            raise OrderServiceUnavailableError(
                f"Order service unavailable (status: {response.status_code})"
            )

        if response.status_code >= 400:
            logger.warning(
                "order_service_rejected_request",
                status_code=response.status_code,
                order_id=order_id,
                correlation_id=correlation_id,
            )
            raise OrderServiceError(
                f"Order service rejected request (status: {response.status_code})"
            )

        try:
            return response.json()
        except ValueError as e:
            raise OrderServiceError("Order service returned a non-JSON body") from e

    @staticmethod
    def _parse_order(payload: dict[str, Any], order_id: int) -> OrderSnapshot:
        try:
            return OrderSnapshot.from_dict(payload)
        except ValueError as e:
            logger.error("order_payload_invalid", order_id=order_id, error=str(e))
            raise OrderServiceError(f"Invalid order payload for order {order_id}") from e

    def __enter__(self) -> "OrderServiceClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
