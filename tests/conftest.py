"""Pytest configuration and shared fixtures for all tests.

This module provides shared test fixtures including:
- File-backed SQLite database per test (shared across threads)
- Database session management
- Controllable wall and monotonic clocks
- In-memory order gateway with sample orders
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from qr_payment.clients.mock_order_gateway import MockOrderGateway
from qr_payment.domain.confirmer import PaymentConfirmer
from qr_payment.domain.context import CallerIdentity, RequestContext
from qr_payment.domain.issuer import TokenIssuer
from qr_payment.domain.order import OrderLineItem
from qr_payment.domain.scanner import ScanValidator
from qr_payment.infrastructure.audit import AuditLogger
from qr_payment.infrastructure.database import create_db_engine, init_db
from qr_payment.infrastructure.rate_limiter import DeviceRateLimiter
from qr_payment.infrastructure.repository import TokenRepository

TEST_SECRET = "test-qr-token-secret-0123456789abcdef"
TEST_ORDER_ID = 1001
TEST_DEVICE_ID = "POS-TERMINAL-01"


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMonotonic:
    """Monotonic clock in seconds that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def db_engine(tmp_path):
    """Create a SQLite database file for one test and create the schema.

    A file (not :memory:) is used so that several threads can open their own
    connections to the same database.
    """
    engine = create_db_engine(f"sqlite:///{tmp_path / 'qr_payment_test.db'}", echo=False)
    init_db(engine)

    yield engine

    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """Create a fresh database session for each test."""
    session = session_factory()

    yield session

    session.rollback()
    session.close()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def order_gateway():
    """Order gateway holding one pending order of 15000 XOF."""
    gateway = MockOrderGateway()
    gateway.add_order(
        TEST_ORDER_ID,
        total_amount="15000",
        items=[
            OrderLineItem(name="Poulet braisé", quantity=2, unit_price=Decimal("5000")),
            OrderLineItem(name="Attiéké", quantity=1, unit_price=Decimal("5000")),
        ],
    )
    return gateway


@pytest.fixture
def cashier():
    return CallerIdentity(user_id="cashier-1", roles=frozenset({"CASHIER"}))


@pytest.fixture
def cashier_context(cashier):
    return RequestContext(
        device_id=TEST_DEVICE_ID,
        caller=cashier,
        client_ip="10.0.0.12",
        user_agent="pos-app/2.4",
    )


@pytest.fixture
def customer_context():
    return RequestContext(
        device_id="CUSTOMER-PHONE",
        caller=CallerIdentity(user_id="customer-7", roles=frozenset({"CUSTOMER"})),
    )


@pytest.fixture
def secret():
    return TEST_SECRET


@pytest.fixture
def order_id():
    return TEST_ORDER_ID


@pytest.fixture
def token_repository(db_session):
    return TokenRepository(db_session)


@pytest.fixture
def audit_logger(db_session):
    return AuditLogger(db_session)


@pytest.fixture
def scan_limiter(monotonic):
    return DeviceRateLimiter("scan", capacity=10, period_seconds=60, clock=monotonic)


@pytest.fixture
def confirm_limiter(monotonic):
    return DeviceRateLimiter("confirm", capacity=5, period_seconds=60, clock=monotonic)


@pytest.fixture
def issuer(token_repository, order_gateway, clock):
    return TokenIssuer(
        repository=token_repository,
        order_gateway=order_gateway,
        secret=TEST_SECRET,
        ttl=timedelta(minutes=5),
        clock=clock,
    )


@pytest.fixture
def scanner(token_repository, audit_logger, order_gateway, scan_limiter, clock):
    return ScanValidator(
        repository=token_repository,
        audit_logger=audit_logger,
        order_gateway=order_gateway,
        rate_limiter=scan_limiter,
        secret=TEST_SECRET,
        clock=clock,
    )


@pytest.fixture
def confirmer(token_repository, audit_logger, order_gateway, confirm_limiter, clock):
    return PaymentConfirmer(
        repository=token_repository,
        audit_logger=audit_logger,
        order_gateway=order_gateway,
        rate_limiter=confirm_limiter,
        clock=clock,
    )
