"""FastAPI dependencies for sessions, collaborators and domain services.

This module provides reusable dependencies for the API routes including:
- Database session management
- Per-device rate limiters (process-wide singletons)
- Order gateway injection
- Domain service injection
"""

from datetime import timedelta
from functools import lru_cache
from typing import Annotated, Generator, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from qr_payment.clients import OrderGateway, create_order_gateway
from qr_payment.config import settings
from qr_payment.domain.confirmer import PaymentConfirmer
from qr_payment.domain.context import CallerIdentity, RequestContext
from qr_payment.domain.issuer import TokenIssuer
from qr_payment.domain.scanner import ScanValidator
from qr_payment.infrastructure.audit import AuditLogger
from qr_payment.infrastructure.database import get_db_session
from qr_payment.infrastructure.rate_limiter import DeviceRateLimiter
from qr_payment.infrastructure.repository import TokenRepository

# Rate limit state lives for the whole process and is shared by all requests
scan_rate_limiter = DeviceRateLimiter(
    name="scan",
    capacity=settings.rate_limit.scan_requests,
    period_seconds=settings.rate_limit.scan_period_seconds,
)
confirm_rate_limiter = DeviceRateLimiter(
    name="confirm",
    capacity=settings.rate_limit.confirm_requests,
    period_seconds=settings.rate_limit.confirm_period_seconds,
)


# Database session dependency
def get_db() -> Generator[Session, None, None]:
    """Provide database session for request.

    Yields:
        SQLAlchemy session that is automatically committed/rolled back
    """
    with get_db_session() as session:
        yield session


DBSession = Annotated[Session, Depends(get_db)]


def get_scan_rate_limiter() -> DeviceRateLimiter:
    return scan_rate_limiter


def get_confirm_rate_limiter() -> DeviceRateLimiter:
    return confirm_rate_limiter


@lru_cache
def get_order_gateway() -> OrderGateway:
    """Provide the process-wide order gateway (built once from settings)."""
    return create_order_gateway()


OrderGatewayDep = Annotated[OrderGateway, Depends(get_order_gateway)]


def get_token_repository(session: DBSession) -> TokenRepository:
    return TokenRepository(session)


TokenRepo = Annotated[TokenRepository, Depends(get_token_repository)]


def get_audit_logger(session: DBSession) -> AuditLogger:
    return AuditLogger(session)


AuditLog = Annotated[AuditLogger, Depends(get_audit_logger)]


def get_token_issuer(repository: TokenRepo, order_gateway: OrderGatewayDep) -> TokenIssuer:
    """Provide token issuer configured from settings."""
    return TokenIssuer(
        repository=repository,
        order_gateway=order_gateway,
        secret=settings.qr_token_secret,
        ttl=timedelta(minutes=settings.qr_token_ttl_minutes),
        short_code_max_attempts=settings.short_code_max_attempts,
    )


Issuer = Annotated[TokenIssuer, Depends(get_token_issuer)]


def get_scan_validator(
    repository: TokenRepo,
    audit_logger: AuditLog,
    order_gateway: OrderGatewayDep,
    rate_limiter: Annotated[DeviceRateLimiter, Depends(get_scan_rate_limiter)],
) -> ScanValidator:
    return ScanValidator(
        repository=repository,
        audit_logger=audit_logger,
        order_gateway=order_gateway,
        rate_limiter=rate_limiter,
        secret=settings.qr_token_secret,
        operator_roles=settings.operator_roles,
    )


Scanner = Annotated[ScanValidator, Depends(get_scan_validator)]


def get_payment_confirmer(
    repository: TokenRepo,
    audit_logger: AuditLog,
    order_gateway: OrderGatewayDep,
    rate_limiter: Annotated[DeviceRateLimiter, Depends(get_confirm_rate_limiter)],
) -> PaymentConfirmer:
    return PaymentConfirmer(
        repository=repository,
        audit_logger=audit_logger,
        order_gateway=order_gateway,
        rate_limiter=rate_limiter,
        operator_roles=settings.operator_roles,
    )


Confirmer = Annotated[PaymentConfirmer, Depends(get_payment_confirmer)]


def build_request_context(
    request: Request, caller: Optional[CallerIdentity], device_id: str
) -> RequestContext:
    """Collect device, caller and client details for audit and rate limiting."""
    return RequestContext(
        device_id=device_id,
        caller=caller,
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
