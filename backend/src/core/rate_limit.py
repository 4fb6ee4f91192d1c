"""
In-process fixed-window rate limiter.

Counters are keyed by arbitrary strings (account id, client IP, login
identity). State lives in a single dict mutated without locks: the
increment-and-compare in ``check`` has no await in between, so it runs to
completion on the event loop. The state is per process; several instances
behind a load balancer each count separately.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import Request

from backend.src.core.config import settings
from backend.src.core.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitPolicy:
    """Maximum requests per window for one kind of key."""

    name: str
    max_requests: int
    window_seconds: float

    @property
    def window_ms(self) -> int:
        return int(self.window_seconds * 1000)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single ``check`` call."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float  # unix seconds
    retry_after: int

    def headers(self) -> Dict[str, str]:
        """``X-RateLimit-*`` response headers for this result."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(math.ceil(self.reset_at))),
        }


@dataclass
class _Bucket:
    count: int
    reset_at: float


class RateLimitPolicies:
    """Configured policies."""

    def __init__(
        self,
        merchant: Optional[RateLimitPolicy] = None,
        widget_ip: Optional[RateLimitPolicy] = None,
        login: Optional[RateLimitPolicy] = None,
    ):
        self.merchant = merchant or RateLimitPolicy(
            "merchant",
            settings.RATE_LIMIT_MERCHANT_REQUESTS,
            settings.RATE_LIMIT_MERCHANT_WINDOW_SECONDS,
        )
        self.widget_ip = widget_ip or RateLimitPolicy(
            "widget_ip",
            settings.RATE_LIMIT_WIDGET_IP_REQUESTS,
            settings.RATE_LIMIT_WIDGET_IP_WINDOW_SECONDS,
        )
        self.login = login or RateLimitPolicy(
            "login",
            settings.RATE_LIMIT_LOGIN_REQUESTS,
            settings.RATE_LIMIT_LOGIN_WINDOW_SECONDS,
        )


class RateLimiter:
    """
    Fixed-window request counter with a timer-driven cleanup task.

    - A bucket is created on first use or once its window has passed
    - Bursts straddling a window boundary may admit up to 2x the limit
    - ``start()``/``stop()`` manage the cleanup task and are idempotent
    """

    def __init__(
        self,
        clock: Clock = time.time,
        cleanup_interval: Optional[float] = None,
        policies: Optional[RateLimitPolicies] = None,
    ):
        self._clock = clock
        self._buckets: Dict[str, _Bucket] = {}
        self._cleanup_interval = (
            cleanup_interval
            if cleanup_interval is not None
            else settings.RATE_LIMIT_CLEANUP_INTERVAL_SECONDS
        )
        self._cleanup_task: Optional[asyncio.Task] = None
        self.policies = policies or RateLimitPolicies()

    def __len__(self) -> int:
        return len(self._buckets)

    @property
    def is_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    def check(self, key: str, max_requests: int, window_ms: int) -> RateLimitResult:
        """
        Count one request against ``key``.

        Args:
            key: Bucket key, e.g. ``"merchant:acc_123"``
            max_requests: Requests allowed per window
            window_ms: Window length in milliseconds

        Returns:
            RateLimitResult; ``allowed`` is False once the count passes
            ``max_requests``
        """
        now = self._clock()
        bucket = self._buckets.get(key)
        if bucket is None or now > bucket.reset_at:
            bucket = _Bucket(count=0, reset_at=now + window_ms / 1000.0)
            self._buckets[key] = bucket

        bucket.count += 1

        return RateLimitResult(
            allowed=bucket.count <= max_requests,
            limit=max_requests,
            remaining=max(0, max_requests - bucket.count),
            reset_at=bucket.reset_at,
            retry_after=max(1, int(math.ceil(bucket.reset_at - now))),
        )

    def check_policy(self, policy: RateLimitPolicy, identity: str) -> RateLimitResult:
        """Count one request for ``identity`` under a named policy."""
        return self.check(f"{policy.name}:{identity}", policy.max_requests, policy.window_ms)

    def cleanup(self) -> int:
        """
        Drop buckets whose window has ended.

        Returns:
            Number of buckets removed
        """
        now = self._clock()
        expired = [key for key, bucket in self._buckets.items() if bucket.reset_at <= now]
        for key in expired:
            del self._buckets[key]
        if expired:
            logger.debug(
                "Rate limit buckets cleaned up",
                extra={"removed": len(expired), "remaining_buckets": len(self._buckets)},
            )
        return len(expired)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._cleanup_interval)
            self.cleanup()

    def start(self) -> None:
        """Start the periodic cleanup task; a second call is a no-op."""
        if self.is_running:
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())
        logger.info(
            "Rate limiter cleanup started",
            extra={"interval_seconds": self._cleanup_interval},
        )

    async def stop(self) -> None:
        """Cancel the cleanup task and wait for it to finish."""
        task = self._cleanup_task
        self._cleanup_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Rate limiter cleanup stopped")


def get_client_ip(request: Request) -> str:
    """Client IP, honouring the first ``X-Forwarded-For`` hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


__all__ = [
    "RateLimitPolicy",
    "RateLimitPolicies",
    "RateLimitResult",
    "RateLimiter",
    "get_client_ip",
]
