"""Payment confirmation against a QR token.

Confirmation is the only operation with a durable effect on the order.
The token is claimed with a single conditional update before the order
service is told about the payment, so a token funds at most one payment.
"""

import time
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional

import structlog

from qr_payment.clients.base import OrderGateway
from qr_payment.domain.context import RequestContext
from qr_payment.domain.exceptions import (
    InsufficientAmountError,
    OrderAlreadyPaidError,
    OrderNotPayableError,
    PaymentReconciliationError,
    QRPaymentError,
    TokenConsumedError,
    TokenExpiredError,
    TokenInvalidError,
)
from qr_payment.domain.order import OrderSnapshot, PaymentMethod, PaymentRecord
from qr_payment.domain.scanner import authorize_operator, elapsed_ms, enforce_rate_limit
from qr_payment.domain.token import Clock, ScanAction, ScanStatus, utc_now
from qr_payment.infrastructure.audit import AuditLogger, ScanAuditEvent
from qr_payment.infrastructure.rate_limiter import DeviceRateLimiter
from qr_payment.infrastructure.repository import TokenIndex, TokenRepository

logger = structlog.get_logger(__name__)

CONFIRMATION_FAILED = "CONFIRMATION_FAILED"


@dataclass(frozen=True)
class ConfirmPaymentCommand:
    """Payment details submitted by the cashier."""

    order_id: int
    token_id: str
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None
    amount_received: Optional[Decimal] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PaymentConfirmation:
    """Outcome of a successful confirmation."""

    order: OrderSnapshot
    token_id: str
    confirmed_at: datetime
    change_due: Optional[Decimal] = None


class PaymentConfirmer:
    """Claims a QR token and records the payment on its order."""

    def __init__(
        self,
        repository: TokenRepository,
        audit_logger: AuditLogger,
        order_gateway: OrderGateway,
        rate_limiter: DeviceRateLimiter,
        operator_roles: Iterable[str] = ("ADMIN", "STAFF", "CASHIER"),
        clock: Clock = utc_now,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.repository = repository
        self.audit_logger = audit_logger
        self.order_gateway = order_gateway
        self.rate_limiter = rate_limiter
        self.operator_roles = tuple(operator_roles)
        self.clock = clock
        self.timer = timer

    def confirm(
        self, command: ConfirmPaymentCommand, context: RequestContext
    ) -> PaymentConfirmation:
        """Confirm payment of an order with its QR token.

        Every call records exactly one audit entry. Of any number of
        concurrent confirms for one token, exactly one succeeds; the others
        are rejected as duplicates.

        Raises:
            AuthenticationRequiredError: No caller identity was presented
            UnauthorizedError: Caller lacks an operator role
            RateLimitedError: Device exhausted its confirm bucket
            TokenInvalidError: Unknown token or token issued for another order
            OrderNotFoundError: Order does not exist
            TokenConsumedError: Token already funded a payment
            TokenExpiredError: Token validity window has passed
            OrderAlreadyPaidError: Order was paid through another channel
            InsufficientAmountError: Amount received is below the amount due
            PaymentReconciliationError: Token claimed but the order was not updated
        """
        started = self.timer()
        event = ScanAuditEvent(
            action=ScanAction.CONFIRM_PAYMENT,
            status=ScanStatus.FAILED,
            device_id=context.device_id,
            user_id=context.user_id,
            order_id=command.order_id,
            token_id=command.token_id,
            payment_method=command.payment_method.value,
            payment_amount=command.amount_received,
            transaction_id=command.transaction_id,
            client_ip=context.client_ip,
            user_agent=context.user_agent,
        )

        try:
            confirmation = self._confirm(command, context, event)
        except QRPaymentError as e:
            if not isinstance(e, PaymentReconciliationError):
                logger.warning(
                    "qr_payment_rejected",
                    order_id=command.order_id,
                    token_id=command.token_id,
                    device_id=context.device_id,
                    status=e.status.value,
                    error_code=e.error_code,
                )
            self._record(event, started, e.status, e.error_code, e.message)
            raise
        except Exception as e:
            self.repository.rollback()
            logger.exception(
                "qr_payment_confirmation_failed",
                order_id=command.order_id,
                token_id=command.token_id,
            )
            self._record(event, started, ScanStatus.FAILED, CONFIRMATION_FAILED, str(e))
            raise

        self._record(event, started, ScanStatus.SUCCESS)
        logger.info(
            "qr_payment_confirmed",
            order_id=command.order_id,
            token_id=command.token_id,
            device_id=context.device_id,
            payment_method=command.payment_method.value,
        )
        return confirmation

    def _confirm(
        self,
        command: ConfirmPaymentCommand,
        context: RequestContext,
        event: ScanAuditEvent,
    ) -> PaymentConfirmation:
        authorize_operator(context, self.operator_roles)
        enforce_rate_limit(self.rate_limiter, context.device_id)

        token = self.repository.find(TokenIndex.TOKEN_ID, command.token_id)
        if token is None:
            raise TokenInvalidError("Invalid payment token")
        event.short_code = token.short_code
        if token.order_id != command.order_id:
            raise TokenInvalidError("Token does not belong to this order")
        if token.consumed:
            raise TokenConsumedError("This QR code has already been used")

        now = self.clock()
        if token.is_expired(now):
            raise TokenExpiredError("This QR code has expired")

        order = self.order_gateway.get_order(command.order_id)
        if order.is_paid:
            raise OrderAlreadyPaidError("This order has already been paid")
        if not order.is_payable:
            raise OrderNotPayableError("This order can no longer be paid")

        change_due = None
        if command.amount_received is not None:
            if command.amount_received < order.total_amount:
                raise InsufficientAmountError(
                    f"Amount received {command.amount_received} is below "
                    f"amount due {order.total_amount}"
                )
            change_due = command.amount_received - order.total_amount

        claimed_at = self.clock()
        if not self.repository.claim(
            command.token_id, context.device_id, context.user_id, claimed_at
        ):
            self.repository.rollback()
            current = self.repository.get_by_token_id(command.token_id)
            if current is not None and current.consumed:
                raise TokenConsumedError("This QR code has already been used")
            raise TokenExpiredError("This QR code has expired")
        self.repository.commit()

        payment = PaymentRecord(
            order_id=command.order_id,
            token_id=command.token_id,
            payment_method=command.payment_method,
            device_id=context.device_id,
            user_id=context.user_id,
            transaction_id=command.transaction_id,
            amount_received=command.amount_received,
            notes=command.notes,
        )
        try:
            updated_order = self.order_gateway.record_payment(payment)
        except Exception as e:
            # Token stays consumed; retrying could charge twice
            logger.error(
                "qr_payment_reconciliation_required",
                order_id=command.order_id,
                token_id=command.token_id,
                device_id=context.device_id,
                user_id=context.user_id,
                payment_method=command.payment_method.value,
                transaction_id=command.transaction_id,
                amount_received=(
                    str(command.amount_received)
                    if command.amount_received is not None
                    else None
                ),
                error=str(e),
                exc_info=True,
            )
            raise PaymentReconciliationError(
                "Token was consumed but the payment could not be recorded on the order. "
                "Manual reconciliation is required."
            ) from e

        return PaymentConfirmation(
            order=updated_order,
            token_id=command.token_id,
            confirmed_at=claimed_at,
            change_due=change_due,
        )

    def _record(
        self,
        event: ScanAuditEvent,
        started: float,
        status: ScanStatus,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        self.audit_logger.record(
            replace(
                event,
                status=status,
                error_code=error_code,
                error_message=error_message,
                processing_time_ms=elapsed_ms(started, self.timer),
                scan_timestamp=self.clock(),
            )
        )
