"""Custom exceptions for QR Payment Service.

Every scan/confirm rejection carries the audit status it is recorded
under and the error code returned to clients.
"""

from qr_payment.domain.token import ScanStatus


class QRPaymentError(Exception):
    """Base exception for QR payment errors."""

    status: ScanStatus = ScanStatus.FAILED
    error_code: str = "FAILED"

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code


class UnauthorizedError(QRPaymentError):
    """Caller lacks the privilege required for the operation."""

    status = ScanStatus.UNAUTHORIZED
    error_code = "UNAUTHORIZED"


class AuthenticationRequiredError(UnauthorizedError):
    """No caller identity was presented."""

    error_code = "AUTHENTICATION_REQUIRED"


class RateLimitedError(QRPaymentError):
    """
    Device exhausted its rate limit bucket.

    This is a TRANSIENT error. The caller may retry after
    ``retry_after_seconds``.
    """

    status = ScanStatus.RATE_LIMITED
    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str, retry_after_seconds: float = 0.0):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class TokenInvalidError(QRPaymentError):
    """
    Credential never existed, has a bad signature, or belongs to another order.

    This is a TERMINAL error for the given input.
    """

    status = ScanStatus.INVALID
    error_code = "TOKEN_INVALID"


class TokenExpiredError(QRPaymentError):
    """
    Token validity window has passed (or it was superseded by a newer token).

    This is a TERMINAL error for the token; a new one must be fetched or
    regenerated.
    """

    status = ScanStatus.EXPIRED
    error_code = "TOKEN_EXPIRED"


class TokenConsumedError(QRPaymentError):
    """
    Token already funded a payment.

    This is a TERMINAL error and a security signal (double scan or replay).
    """

    status = ScanStatus.DUPLICATE
    error_code = "TOKEN_USED"


class OrderAlreadyPaidError(QRPaymentError):
    """Order was already paid through another channel."""

    status = ScanStatus.DUPLICATE
    error_code = "ORDER_ALREADY_PAID"


class InsufficientAmountError(QRPaymentError):
    """Amount received is below the amount due."""

    status = ScanStatus.FAILED
    error_code = "INSUFFICIENT_AMOUNT"


class PaymentReconciliationError(QRPaymentError):
    """
    Token was claimed but recording the payment on the order failed.

    The claim is NOT rolled back. Operators must reconcile the order
    manually; automatic retry could double-charge.
    """

    status = ScanStatus.FAILED
    error_code = "RECONCILIATION_REQUIRED"


class OrderNotFoundError(QRPaymentError):
    """Referenced order does not exist in the order service."""

    status = ScanStatus.INVALID
    error_code = "ORDER_NOT_FOUND"


class OrderNotPayableError(QRPaymentError):
    """Order is paid, refunded or cancelled and cannot receive a token."""

    error_code = "ORDER_NOT_PAYABLE"


class RegenerationNotAllowedError(OrderNotPayableError):
    """Explicit token regeneration refused because the order is not payable."""

    error_code = "REGENERATION_NOT_ALLOWED"


class ShortCodeGenerationError(QRPaymentError):
    """Could not find a free short code within the configured attempts."""

    error_code = "SHORT_CODE_EXHAUSTED"


class TokenIssueConflictError(QRPaymentError):
    """A concurrent issue for the same order kept winning the live-token slot."""

    error_code = "TOKEN_ISSUE_CONFLICT"


class OrderServiceError(QRPaymentError):
    """Order service returned an unexpected response."""

    error_code = "ORDER_SERVICE_ERROR"


class OrderServiceUnavailableError(OrderServiceError):
    """
    Order service timed out or returned 5xx.

    Whether the remote side applied the request is unknown.
    """

    error_code = "ORDER_SERVICE_UNAVAILABLE"


class AuditWriteError(Exception):
    """Raised when an audit entry could not be persisted."""

    pass
