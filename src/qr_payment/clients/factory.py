"""
Order gateway factory.

Selects the order service implementation from configuration so local
development can run without a live order service.
"""

import structlog

from qr_payment.clients.base import OrderGateway
from qr_payment.clients.mock_order_gateway import MockOrderGateway
from qr_payment.clients.order_service_client import OrderServiceClient
from qr_payment.config import settings

logger = structlog.get_logger(__name__)

_GATEWAYS: dict[str, type[OrderGateway]] = {
    "http": OrderServiceClient,
    "mock": MockOrderGateway,
}


def create_order_gateway(gateway_name: str | None = None) -> OrderGateway:
    """
    Create an order gateway by name.

    Args:
        gateway_name: "http" or "mock" (defaults to settings.order_service.gateway)

    Returns:
        OrderGateway instance

    Raises:
        ValueError: If gateway_name is not registered
    """
    name = (gateway_name or settings.order_service.gateway).lower()

    if name not in _GATEWAYS:
        available = ", ".join(sorted(_GATEWAYS))
        raise ValueError(f"Unknown order gateway: {name}. Available gateways: {available}")

    logger.info("order_gateway_created", gateway=name)

    if name == "http":
        return OrderServiceClient(
            base_url=settings.order_service.base_url,
            service_auth_token=settings.order_service.service_auth_token,
            timeout_seconds=settings.order_service.timeout_seconds,
        )
    return MockOrderGateway()
