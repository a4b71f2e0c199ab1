"""Per-device token bucket rate limiting.

Each device gets its own bucket that starts full and refills continuously.
Time is injected through a monotonic clock callable so tests can drive it.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)

MonotonicClock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a rate limit check."""

    allowed: bool
    remaining: int
    limit: int
    retry_after_seconds: float = 0.0


class TokenBucket:
    """Thread-safe token bucket with continuous refill."""

    def __init__(self, capacity: int, refill_per_second: float, now: float):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if refill_per_second <= 0:
            raise ValueError("refill_per_second must be positive")

        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self._tokens = float(capacity)
        self._updated_at = now
        self.last_used_at = now
        self._lock = threading.Lock()

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_second)
        self._updated_at = now

    def try_acquire(self, now: float) -> RateLimitDecision:
        """Take one token if available. Never blocks on the bucket being empty."""
        with self._lock:
            self._refill(now)
            self.last_used_at = now

            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return RateLimitDecision(
                    allowed=True,
                    remaining=int(self._tokens),
                    limit=self.capacity,
                )

            retry_after = (1.0 - self._tokens) / self.refill_per_second
            return RateLimitDecision(
                allowed=False,
                remaining=0,
                limit=self.capacity,
                retry_after_seconds=retry_after,
            )


class DeviceRateLimiter:
    """
    Token bucket rate limiter keyed by device id.

    The bucket map lock only guards creation and eviction; each bucket
    synchronizes its own refill and take, so checks for different devices
    do not contend.
    """

    def __init__(
        self,
        name: str,
        capacity: int,
        period_seconds: float,
        clock: MonotonicClock = time.monotonic,
    ):
        """Initialize rate limiter.

        Args:
            name: Label used in logs (e.g. "scan", "confirm")
            capacity: Requests allowed per period (bucket size)
            period_seconds: Time for an empty bucket to refill completely
            clock: Monotonic time source in seconds
        """
        if period_seconds <= 0:
            raise ValueError("period_seconds must be positive")

        self.name = name
        self.capacity = capacity
        self.period_seconds = period_seconds
        self._refill_per_second = capacity / period_seconds
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def _bucket_for(self, device_id: str, now: float) -> TokenBucket:
        bucket = self._buckets.get(device_id)
        if bucket is not None:
            return bucket
        with self._lock:
            bucket = self._buckets.get(device_id)
            if bucket is None:
                bucket = TokenBucket(self.capacity, self._refill_per_second, now)
                self._buckets[device_id] = bucket
            return bucket

    def check(self, device_id: str) -> RateLimitDecision:
        """Consume one request for a device.

        Args:
            device_id: Device making the request

        Returns:
            RateLimitDecision with allowed/remaining/retry_after
        """
        now = self._clock()
        decision = self._bucket_for(device_id, now).try_acquire(now)
        if not decision.allowed:
            logger.warning(
                "rate_limit_exceeded",
                limiter=self.name,
                device_id=device_id,
                retry_after_seconds=round(decision.retry_after_seconds, 3),
            )
        return decision

    def evict_idle(self, max_idle_seconds: float) -> int:
        """Drop buckets not used for longer than ``max_idle_seconds``.

        An evicted device starts again with a full bucket, which is also the
        state its bucket would have refilled to.

        Returns:
            Number of buckets evicted
        """
        now = self._clock()
        with self._lock:
            idle = [
                device_id
                for device_id, bucket in self._buckets.items()
                if now - bucket.last_used_at > max_idle_seconds
            ]
            for device_id in idle:
                del self._buckets[device_id]

        if idle:
            logger.debug("rate_limit_buckets_evicted", limiter=self.name, count=len(idle))
        return len(idle)

    def __len__(self) -> int:
        return len(self._buckets)
