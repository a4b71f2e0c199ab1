"""Unit tests for payment confirmation."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from qr_payment.domain.confirmer import ConfirmPaymentCommand
from qr_payment.domain.context import RequestContext
from qr_payment.domain.exceptions import (
    AuthenticationRequiredError,
    InsufficientAmountError,
    OrderAlreadyPaidError,
    OrderNotFoundError,
    OrderServiceUnavailableError,
    PaymentReconciliationError,
    RateLimitedError,
    TokenConsumedError,
    TokenExpiredError,
    TokenInvalidError,
    UnauthorizedError,
)
from qr_payment.domain.order import OrderStatus, PaymentMethod, PaymentStatus
from qr_payment.domain.token import ScanAction, ScanStatus
from qr_payment.infrastructure.models import QRScanAuditLog


@pytest.fixture
def issued(issuer, order_id):
    return issuer.issue(order_id)


def command_for(issued, **overrides) -> ConfirmPaymentCommand:
    values = {
        "order_id": issued.order_id,
        "token_id": issued.token_id,
        "payment_method": PaymentMethod.CASH,
        "amount_received": Decimal("20000"),
    }
    values.update(overrides)
    return ConfirmPaymentCommand(**values)


class TestConfirmSuccess:
    def test_confirm_records_payment(
        self, confirmer, issued, order_gateway, token_repository, clock, cashier_context
    ):
        confirmation = confirmer.confirm(command_for(issued), cashier_context)

        assert confirmation.order.payment_status == PaymentStatus.PAID
        assert confirmation.order.status == OrderStatus.CONFIRMED
        assert confirmation.order.payment_method == PaymentMethod.CASH
        assert confirmation.change_due == Decimal("5000")
        assert confirmation.confirmed_at == clock.now

        token = token_repository.get_by_token_id(issued.token_id)
        assert token.consumed is True
        assert token.consumed_at == clock.now
        assert token.consumed_by_device_id == "POS-TERMINAL-01"
        assert token.consumed_by_user_id == "cashier-1"

        [payment] = order_gateway.recorded_payments
        assert payment.token_id == issued.token_id
        assert payment.device_id == "POS-TERMINAL-01"
        assert payment.amount_received == Decimal("20000")

    def test_exact_amount_gives_zero_change(self, confirmer, issued, cashier_context):
        confirmation = confirmer.confirm(
            command_for(issued, amount_received=Decimal("15000")), cashier_context
        )

        assert confirmation.change_due == Decimal("0")

    def test_card_payment_without_amount(self, confirmer, issued, cashier_context):
        confirmation = confirmer.confirm(
            command_for(
                issued,
                payment_method=PaymentMethod.CARD,
                amount_received=None,
                transaction_id="TXN-8812",
            ),
            cashier_context,
        )

        assert confirmation.change_due is None
        assert confirmation.order.transaction_id == "TXN-8812"

    def test_success_is_audited(self, confirmer, issued, audit_logger, cashier_context, order_id):
        confirmer.confirm(command_for(issued, transaction_id="TXN-1"), cashier_context)

        [entry] = audit_logger.entries_for_order(order_id)
        assert entry.action == ScanAction.CONFIRM_PAYMENT.value
        assert entry.status == ScanStatus.SUCCESS.value
        assert entry.short_code == issued.short_code
        assert entry.payment_method == "CASH"
        assert entry.payment_amount == Decimal("20000")
        assert entry.transaction_id == "TXN-1"


class TestConfirmRejections:
    def test_second_confirm_is_duplicate(self, confirmer, issued, order_gateway, cashier_context):
        confirmer.confirm(command_for(issued), cashier_context)

        with pytest.raises(TokenConsumedError) as exc_info:
            confirmer.confirm(command_for(issued), cashier_context)

        assert exc_info.value.status == ScanStatus.DUPLICATE
        assert len(order_gateway.recorded_payments) == 1

    def test_expired_token(self, confirmer, issued, clock, token_repository, cashier_context):
        clock.advance(minutes=6)

        with pytest.raises(TokenExpiredError):
            confirmer.confirm(command_for(issued), cashier_context)

        assert token_repository.get_by_token_id(issued.token_id).consumed is False

    def test_unknown_token(self, confirmer, issued, cashier_context, audit_logger):
        with pytest.raises(TokenInvalidError):
            confirmer.confirm(
                command_for(issued, token_id="qr_00000000-0000-0000-0000-000000000000"),
                cashier_context,
            )

        entry = audit_logger.entries_for_token("qr_00000000-0000-0000-0000-000000000000")[0]
        assert entry.status == ScanStatus.INVALID.value

    def test_token_for_another_order(
        self, confirmer, issued, order_gateway, token_repository, cashier_context
    ):
        order_gateway.add_order(2002)

        with pytest.raises(TokenInvalidError):
            confirmer.confirm(command_for(issued, order_id=2002), cashier_context)

        assert token_repository.get_by_token_id(issued.token_id).consumed is False
        assert order_gateway.recorded_payments == []

    def test_insufficient_amount(
        self, confirmer, issued, token_repository, cashier_context, audit_logger, order_id
    ):
        with pytest.raises(InsufficientAmountError):
            confirmer.confirm(
                command_for(issued, amount_received=Decimal("14999.99")), cashier_context
            )

        assert token_repository.get_by_token_id(issued.token_id).consumed is False
        [entry] = audit_logger.entries_for_order(order_id)
        assert entry.status == ScanStatus.FAILED.value
        assert entry.error_code == "INSUFFICIENT_AMOUNT"

    def test_order_paid_elsewhere(
        self, confirmer, issued, order_gateway, order_id, cashier_context
    ):
        order_gateway.add_order(order_id, total_amount="15000", payment_status=PaymentStatus.PAID)

        with pytest.raises(OrderAlreadyPaidError):
            confirmer.confirm(command_for(issued), cashier_context)

    def test_order_missing(
        self, confirmer, issued, order_gateway, order_id, cashier_context, audit_logger
    ):
        order_gateway._orders.pop(order_id)

        with pytest.raises(OrderNotFoundError):
            confirmer.confirm(command_for(issued), cashier_context)

        [entry] = audit_logger.entries_for_order(order_id)
        assert entry.status == ScanStatus.INVALID.value
        assert entry.error_code == "ORDER_NOT_FOUND"

    def test_customer_cannot_confirm(self, confirmer, issued, token_repository, customer_context):
        with pytest.raises(UnauthorizedError):
            confirmer.confirm(command_for(issued), customer_context)

        assert token_repository.get_by_token_id(issued.token_id).consumed is False

    def test_anonymous_caller_is_audited(
        self, confirmer, issued, token_repository, audit_logger, order_id
    ):
        anonymous = RequestContext(device_id="POS-TERMINAL-01", caller=None)

        with pytest.raises(AuthenticationRequiredError):
            confirmer.confirm(command_for(issued), anonymous)

        [entry] = audit_logger.entries_for_order(order_id)
        assert entry.action == ScanAction.CONFIRM_PAYMENT.value
        assert entry.status == ScanStatus.UNAUTHORIZED.value
        assert entry.error_code == "AUTHENTICATION_REQUIRED"
        assert entry.user_id is None
        assert token_repository.get_by_token_id(issued.token_id).consumed is False

    def test_sixth_confirm_in_a_minute_is_refused(self, confirmer, issued, cashier_context):
        for _ in range(5):
            with pytest.raises(InsufficientAmountError):
                confirmer.confirm(
                    command_for(issued, amount_received=Decimal("1")), cashier_context
                )

        with pytest.raises(RateLimitedError):
            confirmer.confirm(command_for(issued), cashier_context)


class TestReconciliation:
    """The claim survives a failure to record the payment."""

    def test_order_service_failure_after_claim(
        self,
        confirmer,
        issued,
        order_gateway,
        token_repository,
        audit_logger,
        cashier_context,
        order_id,
    ):
        order_gateway.fail_next_record_payment(OrderServiceUnavailableError("timed out"))

        with pytest.raises(PaymentReconciliationError):
            confirmer.confirm(command_for(issued), cashier_context)

        assert token_repository.get_by_token_id(issued.token_id).consumed is True
        [entry] = audit_logger.entries_for_order(order_id)
        assert entry.status == ScanStatus.FAILED.value
        assert entry.error_code == "RECONCILIATION_REQUIRED"

    def test_retry_after_reconciliation_is_duplicate(
        self, confirmer, issued, order_gateway, cashier_context
    ):
        order_gateway.fail_next_record_payment(OrderServiceUnavailableError("timed out"))
        with pytest.raises(PaymentReconciliationError):
            confirmer.confirm(command_for(issued), cashier_context)

        with pytest.raises(TokenConsumedError):
            confirmer.confirm(command_for(issued), cashier_context)

        assert order_gateway.recorded_payments == []


def test_every_confirm_writes_one_audit_entry(
    confirmer, issued, cashier_context, customer_context, db_session
):
    with pytest.raises(UnauthorizedError):
        confirmer.confirm(command_for(issued), customer_context)
    with pytest.raises(InsufficientAmountError):
        confirmer.confirm(command_for(issued, amount_received=Decimal("10")), cashier_context)
    confirmer.confirm(command_for(issued), cashier_context)
    with pytest.raises(TokenConsumedError):
        confirmer.confirm(command_for(issued), cashier_context)

    statuses = db_session.scalars(
        select(QRScanAuditLog.status).order_by(QRScanAuditLog.id)
    ).all()
    assert statuses == ["UNAUTHORIZED", "FAILED", "SUCCESS", "DUPLICATE"]
