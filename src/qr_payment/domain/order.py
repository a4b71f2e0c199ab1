"""Order views consumed from the order service.

The order service owns orders; this service only reads a snapshot for
previews and asks it to record a payment.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class PaymentMethod(str, Enum):
    """Payment methods accepted at the counter."""

    CASH = "CASH"
    CARD = "CARD"
    MOBILE_MONEY = "MOBILE_MONEY"
    BANK_TRANSFER = "BANK_TRANSFER"
    ONLINE = "ONLINE"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY = "READY"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class OrderLineItem:
    """One line of an order preview."""

    name: str
    quantity: int
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass
class OrderSnapshot:
    """Read-only view of an order as reported by the order service."""

    order_id: int
    order_number: str
    total_amount: Decimal
    currency: str
    status: OrderStatus
    payment_status: PaymentStatus
    items: list[OrderLineItem] = field(default_factory=list)
    payment_method: Optional[PaymentMethod] = None
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def is_payable(self) -> bool:
        """Orders can be paid unless already settled, refunded or cancelled."""
        return (
            self.payment_status not in (PaymentStatus.PAID, PaymentStatus.REFUNDED)
            and self.status != OrderStatus.CANCELLED
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert snapshot to a JSON-friendly dictionary."""
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "total_amount": str(self.total_amount),
            "currency": self.currency,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "payment_method": self.payment_method.value if self.payment_method else None,
            "transaction_id": self.transaction_id,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "items": [
                {
                    "name": item.name,
                    "quantity": item.quantity,
                    "unit_price": str(item.unit_price),
                    "subtotal": str(item.subtotal),
                }
                for item in self.items
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderSnapshot":
        """Create a snapshot from an order service JSON payload.

        Raises:
            ValueError: If a required field is missing or malformed
        """
        try:
            return cls(
                order_id=int(data["order_id"]),
                order_number=str(data["order_number"]),
                total_amount=Decimal(str(data["total_amount"])),
                currency=data.get("currency") or "XOF",
                status=OrderStatus(data["status"]),
                payment_status=PaymentStatus(data["payment_status"]),
                items=[
                    OrderLineItem(
                        name=item["name"],
                        quantity=int(item["quantity"]),
                        unit_price=Decimal(str(item["unit_price"])),
                    )
                    for item in data.get("items") or []
                ],
                payment_method=(
                    PaymentMethod(data["payment_method"])
                    if data.get("payment_method")
                    else None
                ),
                transaction_id=data.get("transaction_id"),
                paid_at=(
                    datetime.fromisoformat(data["paid_at"]) if data.get("paid_at") else None
                ),
            )
        except (KeyError, TypeError, ArithmeticError) as e:
            raise ValueError(f"Invalid order payload: {e}") from e


@dataclass(frozen=True)
class PaymentRecord:
    """Payment to attach to an order after a successful claim."""

    order_id: int
    token_id: str
    payment_method: PaymentMethod
    device_id: str
    user_id: Optional[str] = None
    transaction_id: Optional[str] = None
    amount_received: Optional[Decimal] = None
    notes: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "token_id": self.token_id,
            "payment_method": self.payment_method.value,
            "device_id": self.device_id,
            "user_id": self.user_id,
            "transaction_id": self.transaction_id,
            "amount_received": (
                str(self.amount_received) if self.amount_received is not None else None
            ),
            "notes": self.notes,
        }
