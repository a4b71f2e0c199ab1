"""Base interface for the order service collaborator."""

from abc import ABC, abstractmethod

from qr_payment.domain.order import OrderSnapshot, PaymentRecord


class OrderGateway(ABC):
    """
    Abstract interface to the system that owns orders.

    Implementations must raise ``OrderNotFoundError`` for unknown orders and
    ``OrderServiceUnavailableError`` when the outcome of a call is unknown.
    """

    @abstractmethod
    def get_order(self, order_id: int) -> OrderSnapshot:
        """
        Fetch the current state of an order.

        Args:
            order_id: Order to fetch

        Returns:
            OrderSnapshot with amount due, status and line items

        Raises:
            OrderNotFoundError: The order does not exist
            OrderServiceUnavailableError: Timeout, network or 5xx error
        """
        pass

    @abstractmethod
    def record_payment(self, payment: PaymentRecord) -> OrderSnapshot:
        """
        Attach a confirmed payment to an order.

        Args:
            payment: Payment details collected at confirmation

        Returns:
            OrderSnapshot after the payment was applied

        Raises:
            OrderNotFoundError: The order does not exist
            OrderServiceError: The order service rejected the payment
            OrderServiceUnavailableError: Timeout, network or 5xx error
        """
        pass

    def close(self) -> None:
        """Release any held resources."""
        return None
