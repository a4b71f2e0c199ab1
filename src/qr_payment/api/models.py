"""Pydantic models for JSON API requests/responses.

Request and response bodies use camelCase field names on the wire, matching
the point-of-sale clients, while Python code uses snake_case attributes.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from qr_payment.domain.issuer import IssuedToken
from qr_payment.domain.order import OrderSnapshot, PaymentMethod
from qr_payment.domain.scanner import ScanResult


class CamelModel(BaseModel):
    """Base model serializing to camelCase and accepting either case."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# Requests


class ScanRequest(CamelModel):
    """Scan of a QR payload (or a short code typed into the same field)."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "credential": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9.eyJqdGkiOiJxcl82ZjFj...In0.Zk9v...",
                "deviceId": "POS-TERMINAL-01",
            }
        }
    )

    credential: Optional[str] = Field(None, description="Signed QR payload or short code")
    qr_token: Optional[str] = Field(None, description="Alias of credential")
    device_id: str = Field(..., min_length=1, max_length=100, description="Scanning device")

    @model_validator(mode="after")
    def _require_credential(self) -> "ScanRequest":
        if not (self.credential or self.qr_token):
            raise ValueError("credential or qrToken is required")
        return self

    @property
    def value(self) -> str:
        return self.credential or self.qr_token or ""


class ShortCodeScanRequest(CamelModel):
    short_code: str = Field(..., min_length=1, max_length=20, description="Typed short code")
    device_id: str = Field(..., min_length=1, max_length=100, description="Scanning device")


class ConfirmPaymentRequest(CamelModel):
    """Payment confirmation submitted after a successful scan."""

    order_id: int = Field(..., gt=0)
    token_id: str = Field(..., min_length=1, max_length=50)
    payment_method: PaymentMethod
    transaction_id: Optional[str] = Field(None, max_length=100)
    amount_received: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    notes: Optional[str] = Field(None, max_length=500)
    device_id: str = Field(..., min_length=1, max_length=100)


# Responses


class OrderItemModel(CamelModel):
    name: str
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


class OrderSummaryModel(CamelModel):
    """Order preview returned by scan and confirm."""

    order_id: int
    order_number: str
    total_amount: Decimal
    currency: str
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    items: list[OrderItemModel] = Field(default_factory=list)

    @classmethod
    def from_snapshot(cls, order: OrderSnapshot) -> "OrderSummaryModel":
        return cls(
            order_id=order.order_id,
            order_number=order.order_number,
            total_amount=order.total_amount,
            currency=order.currency,
            status=order.status.value,
            payment_status=order.payment_status.value,
            payment_method=order.payment_method.value if order.payment_method else None,
            transaction_id=order.transaction_id,
            paid_at=order.paid_at,
            items=[
                OrderItemModel(
                    name=item.name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    subtotal=item.subtotal,
                )
                for item in order.items
            ],
        )


class ScanResponse(CamelModel):
    success: bool
    status: Optional[str] = None
    order_preview: Optional[OrderSummaryModel] = None
    token_id: Optional[str] = None
    short_code: Optional[str] = None
    expires_at: Optional[datetime] = None
    expires_in_seconds: Optional[int] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def from_result(cls, result: ScanResult) -> "ScanResponse":
        return cls(
            success=True,
            order_preview=OrderSummaryModel.from_snapshot(result.order),
            token_id=result.token_id,
            short_code=result.short_code,
            expires_at=result.expires_at,
            expires_in_seconds=result.expires_in_seconds,
        )


class ConfirmPaymentResponse(CamelModel):
    success: bool
    message: str
    status: Optional[str] = None
    order: Optional[OrderSummaryModel] = None
    change_due: Optional[Decimal] = None
    error_code: Optional[str] = None
    reason: Optional[str] = None


class TokenResponse(CamelModel):
    """Current QR token of an order."""

    token_id: str
    short_code: str
    qr_token: str
    order_id: int
    issued_at: datetime
    expires_at: datetime
    expires_in_seconds: int

    @classmethod
    def from_issued(cls, issued: IssuedToken) -> "TokenResponse":
        return cls(
            token_id=issued.token_id,
            short_code=issued.short_code,
            qr_token=issued.qr_token,
            order_id=issued.order_id,
            issued_at=issued.issued_at,
            expires_at=issued.expires_at,
            expires_in_seconds=issued.expires_in_seconds,
        )


class ErrorResponse(CamelModel):
    success: bool = False
    error_code: str
    error_message: str


class AuditEntryModel(CamelModel):
    id: int
    order_id: Optional[int] = None
    token_id: Optional[str] = None
    short_code: Optional[str] = None
    action: str
    status: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    device_id: str
    user_id: Optional[str] = None
    client_ip: Optional[str] = None
    payment_method: Optional[str] = None
    payment_amount: Optional[Decimal] = None
    transaction_id: Optional[str] = None
    processing_time_ms: int
    scan_timestamp: datetime


class AuditTrailResponse(CamelModel):
    order_id: int
    entries: list[AuditEntryModel]


class SecurityEventsResponse(CamelModel):
    since: datetime
    until: datetime
    count: int
    events: list[AuditEntryModel]
