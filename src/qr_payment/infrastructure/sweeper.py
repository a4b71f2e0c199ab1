"""Periodic maintenance sweep for tokens, audit entries and rate limit buckets.

Expiry is always enforced at read time; the sweep only reclaims storage.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

import structlog
from sqlalchemy.orm import Session

from qr_payment.config import settings
from qr_payment.domain.token import utc_now
from qr_payment.infrastructure.audit import AuditLogger
from qr_payment.infrastructure.rate_limiter import DeviceRateLimiter
from qr_payment.infrastructure.repository import TokenRepository

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SweepResult:
    tokens_deleted: int
    audit_entries_deleted: int
    buckets_evicted: int


def sweep_once(
    session_factory: Callable[[], Session],
    rate_limiters: Iterable[DeviceRateLimiter] = (),
    now: Optional[datetime] = None,
) -> SweepResult:
    """Run a single maintenance pass.

    Args:
        session_factory: Callable returning a new database session
        rate_limiters: Limiters whose idle buckets should be evicted
        now: Reference time (defaults to current UTC time)

    Returns:
        SweepResult with per-category counts
    """
    current = now or utc_now()
    token_cutoff = current - timedelta(hours=settings.token_retention_hours)
    audit_cutoff = current - timedelta(days=settings.audit_retention_days)

    session = session_factory()
    try:
        tokens_deleted = TokenRepository(session).delete_expired_unconsumed(token_cutoff)
        audit_deleted = AuditLogger(session).delete_older_than(audit_cutoff)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    buckets_evicted = sum(
        limiter.evict_idle(settings.rate_limit.idle_eviction_seconds)
        for limiter in rate_limiters
    )

    result = SweepResult(
        tokens_deleted=tokens_deleted,
        audit_entries_deleted=audit_deleted,
        buckets_evicted=buckets_evicted,
    )
    if tokens_deleted or audit_deleted or buckets_evicted:
        logger.info(
            "maintenance_sweep_completed",
            tokens_deleted=tokens_deleted,
            audit_entries_deleted=audit_deleted,
            buckets_evicted=buckets_evicted,
        )
    return result


async def run_sweeper(
    session_factory: Callable[[], Session],
    rate_limiters: Iterable[DeviceRateLimiter] = (),
    interval_seconds: Optional[float] = None,
) -> None:
    """Run the maintenance sweep in the background until cancelled.

    The database work is synchronous, so each pass runs in a worker thread.
    """
    interval = interval_seconds or settings.sweeper_interval_seconds
    limiters = list(rate_limiters)

    logger.info("sweeper_starting", interval_seconds=interval)

    try:
        while True:
            try:
                await asyncio.to_thread(sweep_once, session_factory, limiters)
            except Exception as e:
                logger.error("sweeper_error", error=str(e))
            await asyncio.sleep(interval)

    except asyncio.CancelledError:
        logger.info("sweeper_cancelled")
        raise
