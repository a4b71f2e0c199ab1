"""Scan validation for QR payment tokens.

A scan resolves a credential to its token and returns an order preview.
Scanning never changes the token, so it is safe to repeat.
"""

import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Iterable, Optional

import structlog

from qr_payment.clients.base import OrderGateway
from qr_payment.domain.context import RequestContext
from qr_payment.domain.credential import (
    CredentialError,
    decode_credential,
    is_signed_credential,
)
from qr_payment.domain.exceptions import (
    AuthenticationRequiredError,
    OrderAlreadyPaidError,
    OrderNotPayableError,
    QRPaymentError,
    RateLimitedError,
    TokenConsumedError,
    TokenExpiredError,
    TokenInvalidError,
    UnauthorizedError,
)
from qr_payment.domain.order import OrderSnapshot
from qr_payment.domain.token import (
    Clock,
    CredentialKind,
    PaymentQRToken,
    ScanAction,
    ScanStatus,
    looks_like_short_code,
    utc_now,
)
from qr_payment.infrastructure.audit import AuditLogger, ScanAuditEvent
from qr_payment.infrastructure.rate_limiter import DeviceRateLimiter
from qr_payment.infrastructure.repository import TokenIndex, TokenRepository

logger = structlog.get_logger(__name__)

SCAN_FAILED = "SCAN_FAILED"


@dataclass(frozen=True)
class ScanResult:
    """Successful scan: the order to be paid and the token that authorizes it."""

    order: OrderSnapshot
    token_id: str
    short_code: str
    expires_at: datetime
    expires_in_seconds: int


def authorize_operator(context: RequestContext, operator_roles: Iterable[str]) -> None:
    """Raise unless the caller is known and holds an operator role."""
    if context.caller is None:
        raise AuthenticationRequiredError("Authentication required")
    if not context.caller.has_any_role(operator_roles):
        raise UnauthorizedError("Caller is not allowed to handle QR payments")


def enforce_rate_limit(limiter: DeviceRateLimiter, device_id: str) -> None:
    decision = limiter.check(device_id)
    if not decision.allowed:
        raise RateLimitedError(
            "Too many requests from this device. Please wait before trying again.",
            retry_after_seconds=decision.retry_after_seconds,
        )


def elapsed_ms(started: float, timer: Callable[[], float]) -> int:
    return max(0, int((timer() - started) * 1000))


class ScanValidator:
    """Validates scanned QR payloads and typed short codes."""

    def __init__(
        self,
        repository: TokenRepository,
        audit_logger: AuditLogger,
        order_gateway: OrderGateway,
        rate_limiter: DeviceRateLimiter,
        secret: str,
        operator_roles: Iterable[str] = ("ADMIN", "STAFF", "CASHIER"),
        clock: Clock = utc_now,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.repository = repository
        self.audit_logger = audit_logger
        self.order_gateway = order_gateway
        self.rate_limiter = rate_limiter
        self.secret = secret
        self.operator_roles = tuple(operator_roles)
        self.clock = clock
        self.timer = timer

    def scan(
        self,
        credential: str,
        kind: CredentialKind,
        context: RequestContext,
    ) -> ScanResult:
        """Validate a credential and return the order preview.

        Every call records exactly one audit entry.

        Args:
            credential: Signed QR payload or short code
            kind: How to interpret the credential (AUTO picks by shape)
            context: Device and caller making the scan

        Returns:
            ScanResult for a valid, unconsumed, unexpired token

        Raises:
            AuthenticationRequiredError: No caller identity was presented
            UnauthorizedError: Caller lacks an operator role
            RateLimitedError: Device exhausted its scan bucket
            TokenInvalidError: Unknown token, bad signature or order mismatch
            TokenConsumedError: Token already funded a payment
            TokenExpiredError: Token validity window has passed
            OrderAlreadyPaidError: Order was paid through another channel
        """
        started = self.timer()
        event = ScanAuditEvent(
            action=ScanAction.SCAN,
            status=ScanStatus.FAILED,
            device_id=context.device_id,
            user_id=context.user_id,
            client_ip=context.client_ip,
            user_agent=context.user_agent,
        )

        try:
            result = self._scan(credential, kind, context, event)
        except QRPaymentError as e:
            logger.warning(
                "qr_scan_rejected",
                device_id=context.device_id,
                token_id=event.token_id,
                status=e.status.value,
                error_code=e.error_code,
            )
            self._record(event, started, e.status, e.error_code, e.message)
            raise
        except Exception as e:
            self.repository.rollback()
            logger.exception("qr_scan_failed", device_id=context.device_id)
            self._record(event, started, ScanStatus.FAILED, SCAN_FAILED, str(e))
            raise

        self._record(event, started, ScanStatus.SUCCESS)
        logger.info(
            "qr_scan_succeeded",
            order_id=result.order.order_id,
            token_id=result.token_id,
            device_id=context.device_id,
        )
        return result

    def _scan(
        self,
        credential: str,
        kind: CredentialKind,
        context: RequestContext,
        event: ScanAuditEvent,
    ) -> ScanResult:
        authorize_operator(context, self.operator_roles)
        enforce_rate_limit(self.rate_limiter, context.device_id)

        token = self._resolve(credential, kind, event)
        event.order_id = token.order_id
        event.token_id = token.token_id
        event.short_code = token.short_code

        now = self.clock()
        if token.consumed:
            raise TokenConsumedError("This QR code has already been used")
        if token.is_expired(now):
            raise TokenExpiredError("This QR code has expired")

        order = self.order_gateway.get_order(token.order_id)
        if order.is_paid:
            raise OrderAlreadyPaidError("This order has already been paid")
        if not order.is_payable:
            raise OrderNotPayableError("This order can no longer be paid")

        return ScanResult(
            order=order,
            token_id=token.token_id,
            short_code=token.short_code,
            expires_at=token.expires_at,
            expires_in_seconds=token.expires_in_seconds(now),
        )

    def _resolve(
        self, credential: str, kind: CredentialKind, event: ScanAuditEvent
    ) -> PaymentQRToken:
        value = (credential or "").strip()
        if not value:
            raise TokenInvalidError("Invalid QR code")

        if kind == CredentialKind.AUTO:
            if is_signed_credential(value):
                kind = CredentialKind.TOKEN
            elif looks_like_short_code(value):
                kind = CredentialKind.SHORT_CODE
            else:
                raise TokenInvalidError("Invalid QR code")

        if kind == CredentialKind.SHORT_CODE:
            token = self.repository.find(TokenIndex.SHORT_CODE, value)
            if token is None:
                raise TokenInvalidError("Invalid short code")
            return token

        try:
            claims = decode_credential(value, self.secret)
        except CredentialError as e:
            raise TokenInvalidError("Invalid QR code") from e

        event.token_id = claims.token_id
        event.order_id = claims.order_id
        token = self.repository.find(TokenIndex.TOKEN_ID, claims.token_id)
        if token is None:
            raise TokenInvalidError("Invalid QR code")
        if token.order_id != claims.order_id:
            raise TokenInvalidError("QR code does not match its order")
        return token

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
