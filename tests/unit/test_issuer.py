"""Unit tests for token issuance."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from qr_payment.domain.credential import decode_credential
from qr_payment.domain.exceptions import (
    OrderNotFoundError,
    OrderNotPayableError,
    RegenerationNotAllowedError,
    ShortCodeGenerationError,
    TokenIssueConflictError,
)
from qr_payment.domain.issuer import TokenIssuer
from qr_payment.domain.order import OrderStatus, PaymentStatus
from qr_payment.infrastructure.repository import TokenRepository


class TestIssue:
    """Tests for TokenIssuer.issue."""

    def test_issue_creates_valid_token(self, issuer, token_repository, clock, secret, order_id):
        issued = issuer.issue(order_id)

        stored = token_repository.get_by_token_id(issued.token_id)
        assert stored is not None
        assert stored.order_id == order_id
        assert stored.consumed is False
        assert issued.issued_at == clock.now
        assert issued.expires_at == clock.now + timedelta(minutes=5)
        assert issued.expires_in_seconds == 300
        assert issued.short_code.startswith("QR")

    def test_qr_token_is_signed_credential(self, issuer, secret, order_id):
        issued = issuer.issue(order_id)

        claims = decode_credential(issued.qr_token, secret)

        assert claims.token_id == issued.token_id
        assert claims.order_id == order_id
        assert claims.expires_at == issued.expires_at
        assert claims.issued_at == issued.token.issued_at

    def test_reissue_invalidates_previous_token(self, issuer, token_repository, clock, order_id):
        """After a reissue only the newest token is usable."""
        first = issuer.issue(order_id)
        clock.advance(seconds=30)

        second = issuer.issue(order_id)

        old = token_repository.get_by_token_id(first.token_id)
        assert not old.is_valid_for_use(clock.now)
        assert old.revoked_at == clock.now
        assert old.consumed is False
        current = token_repository.find_valid_for_order(order_id, clock.now)
        assert current.token_id == second.token_id

    def test_unknown_order_rejected(self, issuer):
        with pytest.raises(OrderNotFoundError):
            issuer.issue(424242)

    @pytest.mark.parametrize(
        "status,payment_status",
        [
            (OrderStatus.CONFIRMED, PaymentStatus.PAID),
            (OrderStatus.COMPLETED, PaymentStatus.REFUNDED),
            (OrderStatus.CANCELLED, PaymentStatus.PENDING),
        ],
    )
    def test_unpayable_order_rejected(self, issuer, order_gateway, status, payment_status):
        order_gateway.add_order(2002, status=status, payment_status=payment_status)

        with pytest.raises(OrderNotPayableError):
            issuer.issue(2002)

    def test_short_code_collision_retried(self, issuer, order_gateway, order_id):
        order_gateway.add_order(2002)
        first = issuer.issue(order_id)

        codes = iter([first.short_code, "QRNEW234"])
        with patch("qr_payment.domain.issuer.generate_short_code", side_effect=lambda: next(codes)):
            second = issuer.issue(2002)

        assert second.short_code == "QRNEW234"

    def test_short_code_exhaustion(self, issuer, order_gateway, order_id):
        order_gateway.add_order(2002)
        first = issuer.issue(order_id)
        issuer.short_code_max_attempts = 3

        with patch("qr_payment.domain.issuer.generate_short_code", return_value=first.short_code):
            with pytest.raises(ShortCodeGenerationError):
                issuer.issue(2002)

    def test_failed_issue_keeps_existing_token(
        self, issuer, order_gateway, token_repository, clock, order_id
    ):
        """Invalidation is rolled back together with a failed issue."""
        order_gateway.add_order(2002)
        first = issuer.issue(order_id)
        other = issuer.issue(2002)
        issuer.short_code_max_attempts = 1

        with patch("qr_payment.domain.issuer.generate_short_code", return_value=other.short_code):
            with pytest.raises(ShortCodeGenerationError):
                issuer.issue(order_id)

        assert token_repository.get_by_token_id(first.token_id).is_valid_for_use(clock.now)


class TestConcurrentIssue:
    """Two issuers racing for the same order on separate sessions."""

    @pytest.fixture
    def rival(self, session_factory, order_gateway, clock):
        session = session_factory()
        yield TokenIssuer(
            repository=TokenRepository(session),
            order_gateway=order_gateway,
            secret="rival-issuer-qr-token-secret-0123456",
            clock=clock,
        )
        session.close()

    def test_lost_race_is_retried(self, issuer, rival, token_repository, clock, order_id):
        """A live token committed after our revoke step is revoked on retry."""
        real_invalidate = token_repository.invalidate_valid_for_order
        calls = []
        rival_token = []

        def invalidate_then_lose_race(order_id, now):
            calls.append(order_id)
            if len(calls) == 1:
                # Rival commits between our revoke step and our insert
                rival_token.append(rival.issue(order_id))
                return 0
            return real_invalidate(order_id, now)

        with patch.object(
            token_repository, "invalidate_valid_for_order", side_effect=invalidate_then_lose_race
        ):
            issued = issuer.issue(order_id)

        assert len(calls) == 2
        token_repository.session.expire_all()
        current = token_repository.find_valid_for_order(order_id, clock.now)
        assert current.token_id == issued.token_id
        beaten = token_repository.get_by_token_id(rival_token[0].token_id)
        assert beaten.revoked_at == clock.now
        assert not beaten.is_valid_for_use(clock.now)

    def test_repeated_conflict_raises(self, issuer, rival, token_repository, clock, order_id):
        winner = rival.issue(order_id)

        with patch.object(token_repository, "invalidate_valid_for_order", return_value=0):
            with pytest.raises(TokenIssueConflictError):
                issuer.issue(order_id)

        token_repository.session.expire_all()
        current = token_repository.find_valid_for_order(order_id, clock.now)
        assert current.token_id == winner.token_id


class TestCurrentToken:
    def test_returns_current_token_without_creating(self, issuer, order_id):
        issued = issuer.issue(order_id)

        current = issuer.current_token(order_id)
        again = issuer.current_token(order_id)

        assert current.token_id == issued.token_id
        assert current.qr_token == issued.qr_token
        assert again.token_id == issued.token_id

    def test_none_when_no_token(self, issuer, order_id):
        assert issuer.current_token(order_id) is None

    def test_none_after_expiry(self, issuer, clock, order_id):
        issuer.issue(order_id)
        clock.advance(minutes=5)

        assert issuer.current_token(order_id) is None

    def test_remaining_seconds_reflect_clock(self, issuer, clock, order_id):
        issuer.issue(order_id)
        clock.advance(seconds=100)

        assert issuer.current_token(order_id).expires_in_seconds == 200


class TestRegenerate:
    def test_regenerate_replaces_token(self, issuer, token_repository, clock, order_id):
        first = issuer.issue(order_id)

        second = issuer.regenerate(order_id)

        assert second.token_id != first.token_id
        assert not token_repository.get_by_token_id(first.token_id).is_valid_for_use(clock.now)

    def test_regenerate_refused_for_paid_order(self, issuer, order_gateway):
        order_gateway.add_order(2002, payment_status=PaymentStatus.PAID)

        with pytest.raises(RegenerationNotAllowedError) as exc_info:
            issuer.regenerate(2002)
        assert exc_info.value.error_code == "REGENERATION_NOT_ALLOWED"
