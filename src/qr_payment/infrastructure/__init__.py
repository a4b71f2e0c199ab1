"""Infrastructure layer exports."""

from qr_payment.infrastructure.audit import AuditLogger, ScanAuditEvent
from qr_payment.infrastructure.rate_limiter import DeviceRateLimiter, RateLimitDecision
from qr_payment.infrastructure.repository import TokenIndex, TokenRepository

__all__ = [
    "AuditLogger",
    "ScanAuditEvent",
    "DeviceRateLimiter",
    "RateLimitDecision",
    "TokenIndex",
    "TokenRepository",
]
