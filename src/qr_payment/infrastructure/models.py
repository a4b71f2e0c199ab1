"""SQLAlchemy ORM models for QR Payment Service."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    TIMESTAMP,
    BigInteger,
    Boolean,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func, text

from qr_payment.infrastructure.database import Base


class PaymentQRToken(Base):
    """
    Single-use QR payment tokens.

    Consumed tokens are kept for audit; only long-expired unconsumed
    tokens are removed by the maintenance sweep.
    """

    __tablename__ = "payment_qr_tokens"

    # Primary identifier (format: qr_<uuid>)
    token_id: Mapped[str] = mapped_column(
        String(50), primary_key=True, comment="Token ID in format qr_<uuid>"
    )

    # Unique among currently valid tokens; enforced by the issuer
    short_code: Mapped[str] = mapped_column(
        String(8), nullable=False, comment="Human-typeable fallback code"
    )

    order_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        nullable=False,
        comment="Order this token authorizes payment for",
    )

    # Lifecycle timestamps
    issued_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, comment="Token issue timestamp"
    )

    expires_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, comment="Token expiration timestamp"
    )

    revoked_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="When a newer token for the same order superseded this one",
    )

    # Claim state (set exactly once by the atomic claim)
    consumed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, comment="Terminal once true"
    )

    consumed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Claim timestamp"
    )

    consumed_by_device_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True, comment="Device that confirmed payment"
    )

    consumed_by_user_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True, comment="User that confirmed payment"
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Row creation timestamp",
    )

    __table_args__ = (
        Index("idx_qr_tokens_order_id", "order_id"),
        Index("idx_qr_tokens_short_code", "short_code"),
        Index("idx_qr_tokens_expires_at", "expires_at"),
        Index("idx_qr_tokens_consumed", "consumed"),
        # At most one unconsumed, unrevoked token per order
        Index(
            "uq_qr_tokens_live_per_order",
            "order_id",
            unique=True,
            postgresql_where=text("consumed = false AND revoked_at IS NULL"),
            sqlite_where=text("consumed = 0 AND revoked_at IS NULL"),
        ),
    )


class QRScanAuditLog(Base):
    """
    Audit log for every scan and confirm attempt.

    Insert-only; retention is enforced by the maintenance sweep.
    """

    __tablename__ = "qr_scan_audit_log"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
        comment="Audit log entry ID",
    )

    # What was scanned
    order_id: Mapped[int | None] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), nullable=True
    )
    token_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    short_code: Mapped[str | None] = mapped_column(String(8), nullable=True)

    # Action & outcome
    action: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="SCAN | CONFIRM_PAYMENT"
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="SUCCESS | FAILED | EXPIRED | ..."
    )
    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Who and where
    device_id: Mapped[str] = mapped_column(String(100), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Payment details (CONFIRM_PAYMENT only)
    payment_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payment_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Timing
    processing_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scan_timestamp: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, comment="When the attempt was made"
    )

    __table_args__ = (
        Index("idx_qr_audit_order_id", "order_id"),
        Index("idx_qr_audit_token_id", "token_id"),
        Index("idx_qr_audit_device_id", "device_id"),
        Index("idx_qr_audit_status", "status"),
        Index("idx_qr_audit_scan_timestamp", "scan_timestamp"),
    )
