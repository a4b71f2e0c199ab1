"""Token issuance for QR payments.

Issuing a token for an order first revokes any token the order still
holds. A partial unique index on live tokens backs this up, so at most one
usable token exists per order even when two issues race.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError

from qr_payment.clients.base import OrderGateway
from qr_payment.domain.credential import encode_credential
from qr_payment.domain.exceptions import (
    OrderNotPayableError,
    RegenerationNotAllowedError,
    ShortCodeGenerationError,
    TokenIssueConflictError,
)
from qr_payment.domain.token import Clock, PaymentQRToken, generate_short_code, utc_now
from qr_payment.infrastructure.repository import TokenRepository

logger = structlog.get_logger(__name__)

ISSUE_ATTEMPTS = 2


@dataclass(frozen=True)
class IssuedToken:
    """A stored token together with its signed QR payload."""

    token: PaymentQRToken
    qr_token: str
    expires_in_seconds: int

    @property
    def token_id(self) -> str:
        return self.token.token_id

    @property
    def short_code(self) -> str:
        return self.token.short_code

    @property
    def order_id(self) -> int:
        return self.token.order_id

    @property
    def issued_at(self) -> datetime:
        return self.token.issued_at

    @property
    def expires_at(self) -> datetime:
        return self.token.expires_at


class TokenIssuer:
    """Creates, returns and regenerates single-use QR tokens for orders."""

    def __init__(
        self,
        repository: TokenRepository,
        order_gateway: OrderGateway,
        secret: str,
        ttl: timedelta = timedelta(minutes=5),
        short_code_max_attempts: int = 10,
        clock: Clock = utc_now,
    ):
        self.repository = repository
        self.order_gateway = order_gateway
        self.secret = secret
        self.ttl = ttl
        self.short_code_max_attempts = short_code_max_attempts
        self.clock = clock

    def issue(self, order_id: int) -> IssuedToken:
        """Issue a fresh token for a payable order.

        Any token the order still holds is invalidated in the same
        transaction as the new token is stored.

        Raises:
            OrderNotFoundError: Order does not exist
            OrderNotPayableError: Order is paid, refunded or cancelled
            ShortCodeGenerationError: No free short code was found
            TokenIssueConflictError: A concurrent issue won twice
        """
        return self._issue(order_id, OrderNotPayableError)

    def regenerate(self, order_id: int) -> IssuedToken:
        """Force a new token for an order, replacing its current one.

        Raises:
            OrderNotFoundError: Order does not exist
            RegenerationNotAllowedError: Order is paid, refunded or cancelled
        """
        logger.info("token_regeneration_requested", order_id=order_id)
        return self._issue(order_id, RegenerationNotAllowedError)

    def current_token(self, order_id: int) -> Optional[IssuedToken]:
        """Return the order's newest usable token without creating one."""
        now = self.clock()
        token = self.repository.find_valid_for_order(order_id, now)
        if token is None:
            return None
        return self._to_issued(token, now)

    def _issue(
        self, order_id: int, not_payable_error: type[OrderNotPayableError]
    ) -> IssuedToken:
        order = self.order_gateway.get_order(order_id)
        if not order.is_payable:
            logger.warning(
                "token_issue_refused",
                order_id=order_id,
                status=order.status.value,
                payment_status=order.payment_status.value,
            )
            raise not_payable_error(
                f"Order {order_id} cannot be paid "
                f"(status={order.status.value}, payment_status={order.payment_status.value})"
            )

        for attempt in range(1, ISSUE_ATTEMPTS + 1):
            now = self.clock()
            try:
                token, invalidated = self._replace_live_token(order_id, now)
                break
            except IntegrityError:
                # Another issuer committed a live token for this order first
                if attempt == ISSUE_ATTEMPTS:
                    logger.error("token_issue_conflict_exhausted", order_id=order_id)
                    raise TokenIssueConflictError(
                        f"Order {order_id} is being issued a token concurrently"
                    )
                logger.warning("token_issue_conflict", order_id=order_id, attempt=attempt)

        logger.info(
            "token_issued",
            order_id=order_id,
            token_id=token.token_id,
            expires_at=token.expires_at.isoformat(),
            invalidated=invalidated,
        )
        return self._to_issued(token, now)

    def _replace_live_token(
        self, order_id: int, now: datetime
    ) -> tuple[PaymentQRToken, int]:
        try:
            invalidated = self.repository.invalidate_valid_for_order(order_id, now)
            token = PaymentQRToken.create(
                order_id=order_id,
                short_code=self._unique_short_code(now),
                ttl=self.ttl,
                now=now,
            )
            self.repository.save(token)
            self.repository.commit()
        except Exception:
            self.repository.rollback()
            raise
        return token, invalidated

    def _unique_short_code(self, now: datetime) -> str:
        for attempt in range(1, self.short_code_max_attempts + 1):
            candidate = generate_short_code()
            if not self.repository.short_code_in_use(candidate, now):
                return candidate
            logger.debug("short_code_collision", attempt=attempt)

        logger.error("short_code_exhausted", attempts=self.short_code_max_attempts)
        raise ShortCodeGenerationError(
            f"No free short code after {self.short_code_max_attempts} attempts"
        )

    def _to_issued(self, token: PaymentQRToken, now: datetime) -> IssuedToken:
        return IssuedToken(
            token=token,
            qr_token=encode_credential(
                token.token_id,
                token.order_id,
                token.expires_at,
                self.secret,
                issued_at=token.issued_at,
            ),
            expires_in_seconds=token.expires_in_seconds(now),
        )
