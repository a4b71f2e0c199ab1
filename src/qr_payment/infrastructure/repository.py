"""Repository layer for QR payment token database operations.

This module provides the data access layer for QR payment tokens. The
claim and invalidation paths are single conditional UPDATE statements so
concurrent requests never race on a read-then-write.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

import structlog
from sqlalchemy import case, delete, select, update
from sqlalchemy.orm import Session

from qr_payment.domain.token import PaymentQRToken, ensure_utc, normalize_short_code
from qr_payment.infrastructure.models import PaymentQRToken as PaymentQRTokenModel

logger = structlog.get_logger(__name__)


class TokenIndex(str, Enum):
    """Which identity a token lookup searches."""

    TOKEN_ID = "token_id"
    SHORT_CODE = "short_code"


class TokenRepository:
    """Repository for QR payment token storage, lookup and claiming."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy database session
        """
        self.session = session

    def save(self, token: PaymentQRToken) -> None:
        """Persist a newly issued token.

        Raises:
            IntegrityError: If token_id already exists
        """
        token_model = PaymentQRTokenModel(
            token_id=token.token_id,
            short_code=token.short_code,
            order_id=token.order_id,
            issued_at=token.issued_at,
            expires_at=token.expires_at,
            consumed=token.consumed,
            consumed_at=token.consumed_at,
            consumed_by_device_id=token.consumed_by_device_id,
            consumed_by_user_id=token.consumed_by_user_id,
            revoked_at=token.revoked_at,
        )

        self.session.add(token_model)
        self.session.flush()  # Flush to check for integrity errors

        logger.debug("token_saved", token_id=token.token_id, order_id=token.order_id)

    def find(self, index: TokenIndex, value: str) -> Optional[PaymentQRToken]:
        """Look up a token by full token id or by short code.

        A short code is only unique among valid tokens, so the most recently
        issued match is returned.

        Args:
            index: Which identity to search by
            value: Token id or short code

        Returns:
            PaymentQRToken if found, None otherwise
        """
        if index == TokenIndex.SHORT_CODE:
            criterion = PaymentQRTokenModel.short_code == normalize_short_code(value)
        else:
            criterion = PaymentQRTokenModel.token_id == value.strip()

        token_model = self.session.scalars(
            select(PaymentQRTokenModel)
            .where(criterion)
            .order_by(PaymentQRTokenModel.issued_at.desc())
            .limit(1)
        ).first()

        if not token_model:
            logger.debug("token_not_found", index=index.value)
            return None

        return self._to_domain_entity(token_model)

    def get_by_token_id(self, token_id: str) -> Optional[PaymentQRToken]:
        return self.find(TokenIndex.TOKEN_ID, token_id)

    def get_by_short_code(self, short_code: str) -> Optional[PaymentQRToken]:
        return self.find(TokenIndex.SHORT_CODE, short_code)

    def find_valid_for_order(self, order_id: int, now: datetime) -> Optional[PaymentQRToken]:
        """Return the newest unconsumed, unexpired token for an order."""
        token_model = self.session.scalars(
            select(PaymentQRTokenModel)
            .where(
                PaymentQRTokenModel.order_id == order_id,
                PaymentQRTokenModel.consumed.is_(False),
                PaymentQRTokenModel.expires_at > now,
            )
            .order_by(PaymentQRTokenModel.issued_at.desc())
            .limit(1)
        ).first()

        return self._to_domain_entity(token_model) if token_model else None

    def short_code_in_use(self, short_code: str, now: datetime) -> bool:
        """Check whether a currently valid token already uses a short code."""
        existing = self.session.scalars(
            select(PaymentQRTokenModel.token_id)
            .where(
                PaymentQRTokenModel.short_code == short_code,
                PaymentQRTokenModel.consumed.is_(False),
                PaymentQRTokenModel.expires_at > now,
            )
            .limit(1)
        ).first()
        return existing is not None

    def invalidate_valid_for_order(self, order_id: int, now: datetime) -> int:
        """Revoke every live token of an order.

        Live means neither consumed nor revoked, whether or not it has
        expired, since those rows hold the order's slot in the
        ``uq_qr_tokens_live_per_order`` index. Expiry is pulled forward to
        now and never pushed back. Tokens are not marked consumed since they
        were never used.

        Returns:
            Number of tokens invalidated
        """
        result = self.session.execute(
            update(PaymentQRTokenModel)
            .where(
                PaymentQRTokenModel.order_id == order_id,
                PaymentQRTokenModel.consumed.is_(False),
                PaymentQRTokenModel.revoked_at.is_(None),
            )
            .values(
                revoked_at=now,
                expires_at=case(
                    (PaymentQRTokenModel.expires_at > now, now),
                    else_=PaymentQRTokenModel.expires_at,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        invalidated = result.rowcount or 0
        if invalidated:
            logger.info("tokens_invalidated", order_id=order_id, count=invalidated)
        return invalidated

    def claim(
        self,
        token_id: str,
        device_id: str,
        user_id: Optional[str],
        now: datetime,
    ) -> bool:
        """Atomically mark a token consumed.

        The update only matches while ``consumed`` is false and the token is
        inside its validity window, so of any number of concurrent claims
        exactly one sees a matched row.

        Returns:
            True if this call claimed the token, False otherwise
        """
        result = self.session.execute(
            update(PaymentQRTokenModel)
            .where(
                PaymentQRTokenModel.token_id == token_id,
                PaymentQRTokenModel.consumed.is_(False),
                PaymentQRTokenModel.expires_at > now,
            )
            .values(
                consumed=True,
                consumed_at=now,
                consumed_by_device_id=device_id,
                consumed_by_user_id=user_id,
            )
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount == 1
        logger.debug("token_claim_attempt", token_id=token_id, claimed=claimed)
        return claimed

    def delete_expired_unconsumed(self, before: datetime) -> int:
        """Delete unconsumed tokens that expired before ``before``.

        Consumed tokens are retained for audit.

        Returns:
            Number of tokens deleted
        """
        result = self.session.execute(
            delete(PaymentQRTokenModel)
            .where(
                PaymentQRTokenModel.consumed.is_(False),
                PaymentQRTokenModel.expires_at < before,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def _to_domain_entity(self, model: PaymentQRTokenModel) -> PaymentQRToken:
        """Convert ORM model to domain entity."""
        return PaymentQRToken(
            token_id=model.token_id,
            short_code=model.short_code,
            order_id=model.order_id,
            issued_at=ensure_utc(model.issued_at),
            expires_at=ensure_utc(model.expires_at),
            consumed=bool(model.consumed),
            consumed_at=ensure_utc(model.consumed_at) if model.consumed_at else None,
            consumed_by_device_id=model.consumed_by_device_id,
            consumed_by_user_id=model.consumed_by_user_id,
            revoked_at=ensure_utc(model.revoked_at) if model.revoked_at else None,
        )
