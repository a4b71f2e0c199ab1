"""Internal API routes for QR payment tokens.

These endpoints are only reachable by allowlisted services (the order
service issues a token when an order is placed) and require service
authentication.
"""

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from qr_payment.api.auth import ServiceAuth
from qr_payment.api.dependencies import Issuer
from qr_payment.api.models import ErrorResponse, TokenResponse
from qr_payment.domain.exceptions import (
    OrderNotFoundError,
    OrderNotPayableError,
    OrderServiceUnavailableError,
    QRPaymentError,
    TokenIssueConflictError,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/internal/v1", tags=["internal"])


def _internal_error_status(error: QRPaymentError) -> int:
    if isinstance(error, OrderNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, (OrderNotPayableError, TokenIssueConflictError)):
        return status.HTTP_409_CONFLICT
    if isinstance(error, OrderServiceUnavailableError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.post(
    "/orders/{order_id}/token",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
)
def issue_order_token(order_id: int, auth_info: ServiceAuth, issuer: Issuer):
    """Issue a QR token for a newly placed order.

    Any token the order still holds is invalidated first.

    Security:
    - Only accessible by services in the allowlist
    - Requires X-Service-Auth header
    - Requires X-Request-ID header for correlation

    Responses:
        201 Created: Token issued
        404 Not Found: Order does not exist
        409 Conflict: Order is paid, refunded or cancelled, or a concurrent issue
            kept winning
        503 Service Unavailable: Order service unreachable
    """
    requesting_service, request_id = auth_info

    try:
        issued = issuer.issue(order_id)
    except QRPaymentError as e:
        logger.warning(
            "internal_token_issue_failed",
            order_id=order_id,
            requesting_service=requesting_service,
            request_id=request_id,
            error_code=e.error_code,
        )
        return JSONResponse(
            status_code=_internal_error_status(e),
            content=ErrorResponse(error_code=e.error_code, error_message=e.message).model_dump(
                by_alias=True, mode="json"
            ),
        )

    logger.info(
        "internal_token_issued",
        order_id=order_id,
        token_id=issued.token_id,
        requesting_service=requesting_service,
        request_id=request_id,
    )
    return TokenResponse.from_issued(issued)
