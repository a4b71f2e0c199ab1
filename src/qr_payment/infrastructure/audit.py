"""Audit logging for QR scan and payment confirmation attempts.

Every call into the scan validator or the payment confirmer produces exactly
one entry, whatever its outcome. Entries commit immediately so they survive
a later rollback of the surrounding request.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from qr_payment.domain.exceptions import AuditWriteError
from qr_payment.domain.token import SECURITY_STATUSES, ScanAction, ScanStatus, utc_now
from qr_payment.infrastructure.models import QRScanAuditLog

logger = structlog.get_logger(__name__)

ERROR_MESSAGE_MAX_LENGTH = 500


@dataclass
class ScanAuditEvent:
    """Audit event for one scan or confirm attempt.

    Attributes:
        action: SCAN or CONFIRM_PAYMENT
        status: Outcome of the attempt
        device_id: Device that made the attempt
        user_id: Authenticated caller, if any
        order_id: Order involved, when known
        token_id: Token involved, when resolved
        short_code: Short code involved, when resolved
        error_code: Machine-readable rejection reason
        error_message: Human-readable rejection reason
        payment_method: Payment method (confirm only)
        payment_amount: Amount received (confirm only)
        transaction_id: External transaction reference (confirm only)
        client_ip: Caller IP address
        user_agent: Caller user agent
        processing_time_ms: Elapsed handling time
        scan_timestamp: When the attempt was made
    """

    action: ScanAction
    status: ScanStatus
    device_id: str
    user_id: Optional[str] = None
    order_id: Optional[int] = None
    token_id: Optional[str] = None
    short_code: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    payment_method: Optional[str] = None
    payment_amount: Optional[Decimal] = None
    transaction_id: Optional[str] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    processing_time_ms: int = 0
    scan_timestamp: Optional[datetime] = None


class AuditLogger:
    """Insert-only audit log for QR scan and confirm attempts.

    Design principles:
    - One entry per attempt, success or failure
    - Synchronous, committed writes (a lost entry is an error, not a warning)
    - Retention enforced only by the maintenance sweep
    """

    def __init__(self, db_session: Session):
        """Initialize audit logger with database session.

        Args:
            db_session: SQLAlchemy database session for writing logs
        """
        self.db_session = db_session

    def record(self, event: ScanAuditEvent) -> None:
        """Persist an audit entry and commit it.

        Args:
            event: Audit event to record

        Raises:
            AuditWriteError: If the entry could not be written
        """
        error_message = event.error_message
        if error_message and len(error_message) > ERROR_MESSAGE_MAX_LENGTH:
            error_message = error_message[:ERROR_MESSAGE_MAX_LENGTH]

        entry = QRScanAuditLog(
            order_id=event.order_id,
            token_id=event.token_id,
            short_code=event.short_code,
            action=event.action.value,
            status=event.status.value,
            error_code=event.error_code,
            error_message=error_message,
            device_id=event.device_id,
            user_id=event.user_id,
            client_ip=event.client_ip,
            user_agent=event.user_agent,
            payment_method=event.payment_method,
            payment_amount=event.payment_amount,
            transaction_id=event.transaction_id,
            processing_time_ms=event.processing_time_ms,
            scan_timestamp=event.scan_timestamp or utc_now(),
        )

        try:
            self.db_session.add(entry)
            self.db_session.commit()
        except SQLAlchemyError as e:
            self.db_session.rollback()
            logger.error(
                "audit_write_failed",
                action=event.action.value,
                status=event.status.value,
                device_id=event.device_id,
                token_id=event.token_id,
                error=str(e),
            )
            raise AuditWriteError(f"Failed to write audit entry: {e}") from e

        logger.info(
            "audit_entry_recorded",
            action=event.action.value,
            status=event.status.value,
            order_id=event.order_id,
            token_id=event.token_id,
            device_id=event.device_id,
        )

    def entries_for_order(self, order_id: int) -> list[QRScanAuditLog]:
        """Audit trail of an order, newest first."""
        return list(
            self.db_session.scalars(
                select(QRScanAuditLog)
                .where(QRScanAuditLog.order_id == order_id)
                .order_by(QRScanAuditLog.scan_timestamp.desc(), QRScanAuditLog.id.desc())
            )
        )

    def entries_for_token(self, token_id: str) -> list[QRScanAuditLog]:
        return list(
            self.db_session.scalars(
                select(QRScanAuditLog)
                .where(QRScanAuditLog.token_id == token_id)
                .order_by(QRScanAuditLog.scan_timestamp.desc(), QRScanAuditLog.id.desc())
            )
        )

    def security_events(
        self, since: datetime, until: Optional[datetime] = None
    ) -> list[QRScanAuditLog]:
        """Rejected attempts that may indicate abuse (invalid, expired, replayed, unauthorized).

        Args:
            since: Inclusive lower bound on scan_timestamp
            until: Exclusive upper bound (defaults to now)
        """
        upper = until or utc_now()
        return list(
            self.db_session.scalars(
                select(QRScanAuditLog)
                .where(
                    QRScanAuditLog.status.in_([s.value for s in SECURITY_STATUSES]),
                    QRScanAuditLog.scan_timestamp >= since,
                    QRScanAuditLog.scan_timestamp < upper,
                )
                .order_by(QRScanAuditLog.scan_timestamp.desc(), QRScanAuditLog.id.desc())
            )
        )

    def delete_older_than(self, before: datetime) -> int:
        """Delete entries recorded before ``before``.

        Returns:
            Number of entries deleted
        """
        result = self.db_session.execute(
            delete(QRScanAuditLog)
            .where(QRScanAuditLog.scan_timestamp < before)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
