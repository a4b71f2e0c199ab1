"""
In-memory order gateway for local development and tests.

Mirrors the behavior of OrderServiceClient: unknown orders raise
OrderNotFoundError, recording a payment on a settled order is rejected,
and a failure can be scripted for the next record_payment call to exercise
the reconciliation path.
"""

import threading
from dataclasses import replace
from decimal import Decimal
from typing import Iterable, Optional

import structlog

from qr_payment.clients.base import OrderGateway
from qr_payment.domain.exceptions import (
    OrderNotFoundError,
    OrderServiceError,
    QRPaymentError,
)
from qr_payment.domain.order import (
    OrderLineItem,
    OrderSnapshot,
    OrderStatus,
    PaymentRecord,
    PaymentStatus,
)
from qr_payment.domain.token import utc_now

logger = structlog.get_logger(__name__)


class MockOrderGateway(OrderGateway):
    """Thread-safe in-memory order store."""

    def __init__(self, orders: Optional[Iterable[OrderSnapshot]] = None):
        self._orders: dict[int, OrderSnapshot] = {}
        self._lock = threading.Lock()
        self._next_failure: Optional[QRPaymentError] = None
        self.recorded_payments: list[PaymentRecord] = []
        for order in orders or ():
            self._orders[order.order_id] = order

    def add_order(
        self,
        order_id: int,
        total_amount: Decimal | str = Decimal("10000"),
        currency: str = "XOF",
        status: OrderStatus = OrderStatus.PENDING,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        items: Optional[list[OrderLineItem]] = None,
    ) -> OrderSnapshot:
        """Create (or replace) an order and return its snapshot."""
        order = OrderSnapshot(
            order_id=order_id,
            order_number=f"ORD-{order_id:06d}",
            total_amount=Decimal(str(total_amount)),
            currency=currency,
            status=status,
            payment_status=payment_status,
            items=items or [],
        )
        with self._lock:
            self._orders[order_id] = order
        return order

    def fail_next_record_payment(self, error: QRPaymentError) -> None:
        """Make the next record_payment call raise ``error``."""
        with self._lock:
            self._next_failure = error

    def get_order(self, order_id: int) -> OrderSnapshot:
        with self._lock:
            order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    def record_payment(self, payment: PaymentRecord) -> OrderSnapshot:
        with self._lock:
            if self._next_failure is not None:
                error, self._next_failure = self._next_failure, None
                raise error

            order = self._orders.get(payment.order_id)
            if order is None:
                raise OrderNotFoundError(f"Order {payment.order_id} not found")
            if order.is_paid:
                raise OrderServiceError(f"Order {payment.order_id} is already paid")

            updated = replace(
                order,
                payment_status=PaymentStatus.PAID,
                status=(
                    OrderStatus.CONFIRMED
                    if order.status == OrderStatus.PENDING
                    else order.status
                ),
                payment_method=payment.payment_method,
                transaction_id=payment.transaction_id,
                paid_at=utc_now(),
            )
            self._orders[payment.order_id] = updated
            self.recorded_payments.append(payment)

        logger.info(
            "mock_payment_recorded",
            order_id=payment.order_id,
            token_id=payment.token_id,
            payment_method=payment.payment_method.value,
        )
        return updated
