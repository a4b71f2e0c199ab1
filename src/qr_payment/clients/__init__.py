"""Clients for services this one collaborates with."""

from qr_payment.clients.base import OrderGateway
from qr_payment.clients.factory import create_order_gateway
from qr_payment.clients.mock_order_gateway import MockOrderGateway
from qr_payment.clients.order_service_client import OrderServiceClient

__all__ = [
    "OrderGateway",
    "OrderServiceClient",
    "MockOrderGateway",
    "create_order_gateway",
]
