"""Concurrency tests for payment confirmation.

Several devices confirm the same token at the same moment, each on its own
database connection. Exactly one claim may win.
"""

import threading
from decimal import Decimal

import pytest
from sqlalchemy import select

from qr_payment.domain.confirmer import ConfirmPaymentCommand, PaymentConfirmer
from qr_payment.domain.context import RequestContext
from qr_payment.domain.exceptions import QRPaymentError
from qr_payment.domain.order import PaymentMethod
from qr_payment.domain.token import ScanStatus
from qr_payment.infrastructure.audit import AuditLogger
from qr_payment.infrastructure.models import QRScanAuditLog
from qr_payment.infrastructure.rate_limiter import DeviceRateLimiter
from qr_payment.infrastructure.repository import TokenRepository

pytestmark = pytest.mark.integration

CONCURRENT_CONFIRMS = 8


def test_only_one_concurrent_confirm_succeeds(
    session_factory, issuer, order_gateway, cashier, clock, order_id
):
    issued = issuer.issue(order_id)
    limiter = DeviceRateLimiter("confirm", capacity=100, period_seconds=60)
    barrier = threading.Barrier(CONCURRENT_CONFIRMS)
    outcomes: list[object] = []
    outcomes_lock = threading.Lock()

    def attempt(device_number: int) -> None:
        session = session_factory()
        confirmer = PaymentConfirmer(
            repository=TokenRepository(session),
            audit_logger=AuditLogger(session),
            order_gateway=order_gateway,
            rate_limiter=limiter,
            clock=clock,
        )
        command = ConfirmPaymentCommand(
            order_id=order_id,
            token_id=issued.token_id,
            payment_method=PaymentMethod.CASH,
            amount_received=Decimal("15000"),
        )
        context = RequestContext(device_id=f"POS-{device_number:02d}", caller=cashier)
        barrier.wait()
        try:
            outcome: object = confirmer.confirm(command, context)
        except QRPaymentError as e:
            outcome = e
        finally:
            session.close()
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [
        threading.Thread(target=attempt, args=(n,)) for n in range(CONCURRENT_CONFIRMS)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert len(outcomes) == CONCURRENT_CONFIRMS
    failures = [o for o in outcomes if isinstance(o, QRPaymentError)]
    assert len(failures) == CONCURRENT_CONFIRMS - 1
    assert all(f.status == ScanStatus.DUPLICATE for f in failures)
    assert len(order_gateway.recorded_payments) == 1

    session = session_factory()
    statuses = session.scalars(select(QRScanAuditLog.status)).all()
    session.close()
    assert len(statuses) == CONCURRENT_CONFIRMS
    assert statuses.count(ScanStatus.SUCCESS.value) == 1
    assert statuses.count(ScanStatus.DUPLICATE.value) == CONCURRENT_CONFIRMS - 1
