"""Domain models for QR payment tokens.

This module contains the core domain entities and value objects for the
QR payment token flow. These models represent the business logic layer
and are independent of infrastructure concerns.
"""

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

# Ambiguous characters (0, O, 1, I) are left out so codes can be read aloud
SHORT_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
SHORT_CODE_PREFIX = "QR"
SHORT_CODE_RANDOM_LENGTH = 6

TOKEN_ID_PREFIX = "qr_"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ScanAction(str, Enum):
    """Kind of attempt recorded in the audit log."""

    SCAN = "SCAN"
    CONFIRM_PAYMENT = "CONFIRM_PAYMENT"


class ScanStatus(str, Enum):
    """Outcome of a scan or confirm attempt."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    INVALID = "INVALID"
    DUPLICATE = "DUPLICATE"
    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMITED = "RATE_LIMITED"


SECURITY_STATUSES = (
    ScanStatus.INVALID,
    ScanStatus.EXPIRED,
    ScanStatus.DUPLICATE,
    ScanStatus.UNAUTHORIZED,
)


class CredentialKind(str, Enum):
    """How a scanned credential should be resolved."""

    TOKEN = "TOKEN"
    SHORT_CODE = "SHORT_CODE"
    AUTO = "AUTO"


def generate_token_id() -> str:
    """Generate a new token ID in format qr_{uuid4}."""
    return f"{TOKEN_ID_PREFIX}{uuid.uuid4()}"


def generate_short_code() -> str:
    """Generate a short code: "QR" followed by 6 random unambiguous characters."""
    suffix = "".join(
        secrets.choice(SHORT_CODE_ALPHABET) for _ in range(SHORT_CODE_RANDOM_LENGTH)
    )
    return f"{SHORT_CODE_PREFIX}{suffix}"


def normalize_short_code(short_code: str) -> str:
    """Normalize a human-typed short code for lookup."""
    return short_code.strip().replace(" ", "").replace("-", "").upper()


def looks_like_short_code(value: str) -> bool:
    """Check whether a value has the shape of a short code."""
    code = normalize_short_code(value)
    return (
        len(code) == len(SHORT_CODE_PREFIX) + SHORT_CODE_RANDOM_LENGTH
        and code.startswith(SHORT_CODE_PREFIX)
        and all(ch in SHORT_CODE_ALPHABET for ch in code[len(SHORT_CODE_PREFIX):])
    )


@dataclass
class PaymentQRToken:
    """Single-use credential authorizing payment confirmation for one order.

    Attributes:
        token_id: Token ID in format qr_{uuid}
        short_code: Human-typeable fallback code
        order_id: Order this token authorizes payment for
        issued_at: When the token was issued
        expires_at: End of the validity window
        consumed: True once a confirmation has claimed the token (terminal)
        consumed_at: When the claim happened
        consumed_by_device_id: Device that claimed the token
        consumed_by_user_id: User that claimed the token
        revoked_at: When a newer token for the same order superseded this one
    """

    token_id: str
    short_code: str
    order_id: int
    issued_at: datetime
    expires_at: datetime
    consumed: bool = False
    consumed_at: Optional[datetime] = None
    consumed_by_device_id: Optional[str] = None
    consumed_by_user_id: Optional[str] = None
    revoked_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate token fields."""
        if not self.token_id.startswith(TOKEN_ID_PREFIX):
            raise ValueError(f"token_id must start with '{TOKEN_ID_PREFIX}'")

        if not self.short_code:
            raise ValueError("short_code cannot be empty")

        if self.expires_at < self.issued_at:
            raise ValueError("expires_at must not be before issued_at")

    @classmethod
    def create(
        cls,
        order_id: int,
        short_code: str,
        ttl: timedelta,
        now: Optional[datetime] = None,
    ) -> "PaymentQRToken":
        """Create a new unconsumed token valid for ``ttl`` from ``now``.

        Args:
            order_id: Order the token authorizes payment for
            short_code: Pre-generated unique short code
            ttl: Length of the validity window
            now: Issue time (defaults to current UTC time)

        Returns:
            New PaymentQRToken instance
        """
        issued_at = now or utc_now()
        return cls(
            token_id=generate_token_id(),
            short_code=short_code,
            order_id=order_id,
            issued_at=issued_at,
            expires_at=issued_at + ttl,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the validity window has passed."""
        current = ensure_utc(now or utc_now())
        return current >= ensure_utc(self.expires_at)

    def is_valid_for_use(self, now: Optional[datetime] = None) -> bool:
        """A token is usable while unconsumed and inside its validity window."""
        return not self.consumed and not self.is_expired(now)

    def expires_in_seconds(self, now: Optional[datetime] = None) -> int:
        """Whole seconds left before expiry (never negative)."""
        current = ensure_utc(now or utc_now())
        remaining = (ensure_utc(self.expires_at) - current).total_seconds()
        return max(0, int(remaining))
