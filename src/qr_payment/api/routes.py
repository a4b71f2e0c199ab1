"""FastAPI routes for QR payment operations.

This module implements the REST API endpoints used by point-of-sale devices:
- POST /api/qr-payment/scan: Validate a scanned QR payload
- POST /api/qr-payment/scan-short-code: Validate a typed short code
- POST /api/qr-payment/confirm: Confirm payment with a scanned token
- GET /api/qr-payment/orders/{order_id}/token: Current token of an order
- POST /api/qr-payment/orders/{order_id}/regenerate-token: Replace an order's token
- GET /api/qr-payment/orders/{order_id}/audit: Audit trail of an order
- GET /api/qr-payment/audit/security-events: Rejected attempts worth reviewing

Handlers are plain functions so each request runs in the threadpool with
its own database session.
"""

import math
from datetime import datetime, timedelta
from typing import Optional

import structlog
from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from qr_payment.api.auth import Caller, OptionalCaller, require_roles
from qr_payment.api.dependencies import (
    AuditLog,
    Confirmer,
    Issuer,
    Scanner,
    build_request_context,
)
from qr_payment.api.models import (
    AuditEntryModel,
    AuditTrailResponse,
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    ErrorResponse,
    OrderSummaryModel,
    ScanRequest,
    ScanResponse,
    SecurityEventsResponse,
    ShortCodeScanRequest,
    TokenResponse,
)
from qr_payment.config import settings
from qr_payment.domain.confirmer import CONFIRMATION_FAILED, ConfirmPaymentCommand
from qr_payment.domain.context import CallerIdentity
from qr_payment.domain.exceptions import (
    AuthenticationRequiredError,
    OrderNotFoundError,
    OrderServiceUnavailableError,
    PaymentReconciliationError,
    QRPaymentError,
    RateLimitedError,
    TokenIssueConflictError,
    UnauthorizedError,
)
from qr_payment.domain.scanner import SCAN_FAILED, ScanValidator
from qr_payment.domain.token import CredentialKind, ensure_utc, utc_now

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/qr-payment", tags=["qr-payment"])

SECURITY_EVENTS_DEFAULT_WINDOW = timedelta(hours=24)


def error_status_code(error: QRPaymentError) -> int:
    """Map a domain error to its HTTP status code."""
    if isinstance(error, RateLimitedError):
        return status.HTTP_429_TOO_MANY_REQUESTS
    if isinstance(error, AuthenticationRequiredError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(error, UnauthorizedError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(error, TokenIssueConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(error, PaymentReconciliationError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    if isinstance(error, OrderServiceUnavailableError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


def _error_headers(error: QRPaymentError) -> Optional[dict[str, str]]:
    if isinstance(error, RateLimitedError):
        return {"Retry-After": str(max(1, math.ceil(error.retry_after_seconds)))}
    return None


def _scan_error_response(error: QRPaymentError) -> JSONResponse:
    body = ScanResponse(
        success=False,
        status=error.status.value,
        error_code=error.error_code,
        error_message=error.message,
    )
    return JSONResponse(
        status_code=error_status_code(error),
        content=body.model_dump(by_alias=True, mode="json", exclude_none=True),
        headers=_error_headers(error),
    )


def _scan_failure_response() -> JSONResponse:
    body = ScanResponse(
        success=False,
        error_code=SCAN_FAILED,
        error_message="Failed to process QR code",
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body.model_dump(by_alias=True, mode="json", exclude_none=True),
    )


def _run_scan(
    scanner: ScanValidator,
    request: Request,
    caller: Optional[CallerIdentity],
    credential: str,
    kind: CredentialKind,
    device_id: str,
) -> ScanResponse | JSONResponse:
    context = build_request_context(request, caller, device_id)
    try:
        result = scanner.scan(credential, kind, context)
    except QRPaymentError as e:
        return _scan_error_response(e)
    except Exception:
        logger.exception("scan_request_failed", device_id=device_id)
        return _scan_failure_response()

    return ScanResponse.from_result(result)


@router.post("/scan", response_model=ScanResponse, response_model_exclude_none=True)
def scan_qr_code(
    body: ScanRequest,
    request: Request,
    caller: OptionalCaller,
    scanner: Scanner,
):
    """Validate a scanned QR payload and return the order preview.

    A short code sent in the same field is detected and resolved as well.
    Scanning never consumes the token.

    Responses:
        200 OK: Token valid, order preview returned
        400 Bad Request: Invalid, expired or already used token
        401 Unauthorized: No caller identity (the attempt is still audited)
        403 Forbidden: Caller is not an operator
        429 Too Many Requests: Device scan limit exceeded
        500 Internal Server Error: Unexpected failure
    """
    return _run_scan(scanner, request, caller, body.value, CredentialKind.AUTO, body.device_id)


@router.post(
    "/scan-short-code", response_model=ScanResponse, response_model_exclude_none=True
)
def scan_short_code(
    body: ShortCodeScanRequest,
    request: Request,
    caller: OptionalCaller,
    scanner: Scanner,
):
    """Validate a typed short code (fallback when the camera cannot read the QR)."""
    return _run_scan(
        scanner, request, caller, body.short_code, CredentialKind.SHORT_CODE, body.device_id
    )


@router.post(
    "/confirm", response_model=ConfirmPaymentResponse, response_model_exclude_none=True
)
def confirm_payment(
    body: ConfirmPaymentRequest,
    request: Request,
    caller: OptionalCaller,
    confirmer: Confirmer,
):
    """Confirm payment of an order with its scanned QR token.

    The token is consumed by the first successful confirmation; every later
    or concurrent attempt is rejected as a duplicate.

    Responses:
        200 OK: Payment recorded, updated order returned
        400 Bad Request: Token invalid, expired, used, or amount insufficient
        401 Unauthorized: No caller identity (the attempt is still audited)
        403 Forbidden: Caller is not an operator
        429 Too Many Requests: Device confirm limit exceeded
        500 Internal Server Error: Unexpected failure or reconciliation required
    """
    context = build_request_context(request, caller, body.device_id)
    command = ConfirmPaymentCommand(
        order_id=body.order_id,
        token_id=body.token_id,
        payment_method=body.payment_method,
        transaction_id=body.transaction_id,
        amount_received=body.amount_received,
        notes=body.notes,
    )

    try:
        confirmation = confirmer.confirm(command, context)
    except QRPaymentError as e:
        if isinstance(e, (RateLimitedError, UnauthorizedError)):
            error_code = e.error_code
        else:
            error_code = CONFIRMATION_FAILED
        response = ConfirmPaymentResponse(
            success=False,
            message=e.message,
            status=e.status.value,
            error_code=error_code,
            reason=e.error_code,
        )
        return JSONResponse(
            status_code=error_status_code(e),
            content=response.model_dump(by_alias=True, mode="json", exclude_none=True),
            headers=_error_headers(e),
        )
    except Exception:
        logger.exception(
            "confirm_request_failed",
            order_id=body.order_id,
            token_id=body.token_id,
        )
        response = ConfirmPaymentResponse(
            success=False,
            message="Failed to confirm payment",
            error_code=CONFIRMATION_FAILED,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(by_alias=True, mode="json", exclude_none=True),
        )

    return ConfirmPaymentResponse(
        success=True,
        message="Payment confirmed successfully",
        order=OrderSummaryModel.from_snapshot(confirmation.order),
        change_due=confirmation.change_due,
    )


def _error_response(status_code: int, error_code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error_code=error_code, error_message=message).model_dump(
            by_alias=True, mode="json"
        ),
    )


@router.get("/orders/{order_id}/token", response_model=TokenResponse)
def get_order_token(order_id: int, caller: Caller, issuer: Issuer):
    """Return the order's current valid token. Never creates one.

    Responses:
        200 OK: Token found
        403 Forbidden: Caller may not read tokens
        404 Not Found: No valid token (expired, used or never issued)
    """
    require_roles(caller, settings.token_reader_roles)

    issued = issuer.current_token(order_id)
    if issued is None:
        return _error_response(
            status.HTTP_404_NOT_FOUND,
            "TOKEN_NOT_FOUND",
            f"No valid QR token for order {order_id}",
        )
    return TokenResponse.from_issued(issued)


@router.post("/orders/{order_id}/regenerate-token", response_model=TokenResponse)
def regenerate_order_token(order_id: int, caller: Caller, issuer: Issuer):
    """Invalidate the order's current token and issue a new one.

    Responses:
        200 OK: New token issued
        400 Bad Request: Order is paid, refunded or cancelled
        403 Forbidden: Caller is not an operator
        404 Not Found: Order does not exist
        409 Conflict: Another regeneration for the order kept winning
        503 Service Unavailable: Order service unreachable
    """
    require_roles(caller, settings.operator_roles)

    try:
        issued = issuer.regenerate(order_id)
    except OrderNotFoundError as e:
        return _error_response(status.HTTP_404_NOT_FOUND, e.error_code, e.message)
    except QRPaymentError as e:
        return _error_response(error_status_code(e), e.error_code, e.message)

    logger.info("token_regenerated", order_id=order_id, user_id=caller.user_id)
    return TokenResponse.from_issued(issued)


@router.get("/orders/{order_id}/audit", response_model=AuditTrailResponse)
def get_order_audit_trail(order_id: int, caller: Caller, audit_logger: AuditLog):
    """Return every scan and confirm attempt recorded for an order."""
    require_roles(caller, settings.audit_reader_roles)

    entries = audit_logger.entries_for_order(order_id)
    return AuditTrailResponse(
        order_id=order_id,
        entries=[AuditEntryModel.model_validate(entry) for entry in entries],
    )


@router.get("/audit/security-events", response_model=SecurityEventsResponse)
def get_security_events(
    caller: Caller,
    audit_logger: AuditLog,
    since: Optional[datetime] = Query(None, description="Start of window (default: 24h ago)"),
    until: Optional[datetime] = Query(None, description="End of window (default: now)"),
):
    """Return invalid, expired, replayed and unauthorized attempts in a time window."""
    require_roles(caller, settings.audit_reader_roles)

    window_end = ensure_utc(until) if until else utc_now()
    window_start = ensure_utc(since) if since else window_end - SECURITY_EVENTS_DEFAULT_WINDOW
    if window_start >= window_end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="'since' must be before 'until'",
        )

    events = audit_logger.security_events(window_start, window_end)
    return SecurityEventsResponse(
        since=window_start,
        until=window_end,
        count=len(events),
        events=[AuditEntryModel.model_validate(event) for event in events],
    )
