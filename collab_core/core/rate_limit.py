"""
Fixed-window rate limiting per principal.

Windows are aligned to multiples of the window length and do not
slide: a burst straddling a boundary can admit up to twice the nominal
rate.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog

from ..config.loader import RateLimitConfig
from ..errors import RateLimited
from ..storage.base import RateWindowStore

logger = structlog.get_logger()

# Windows older than this are removed by cleanup()
DEFAULT_CLEANUP_AGE_SECONDS = 24 * 3600


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: Optional[int] = None
    degraded: bool = False


@dataclass(frozen=True)
class RateLimitStatus:
    count: int
    limit: int
    remaining: int
    reset_at: datetime


class RateLimiter:
    """Per-principal fixed-window throttle.

    When the window store fails, the limiter allows the request if
    config.fail_open is set and denies it otherwise. Either way the
    failure is logged, never raised.
    """

    def __init__(self, store: RateWindowStore, config: Optional[RateLimitConfig] = None, scope: str = "core"):
        self.store = store
        self.config = config or RateLimitConfig()
        self.scope = scope

    def _key(self, principal_id: str) -> str:
        return f"{self.scope}:{principal_id}"

    def window_start(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        window = self.config.window_seconds
        return int(now // window) * window

    def check(self, principal_id: str, now: Optional[float] = None) -> RateLimitDecision:
        """Count one request for the principal.

        Args:
            principal_id: Authenticated principal
            now: Epoch seconds; defaults to the current time

        Returns:
            RateLimitDecision; denied decisions carry retry_after equal to
            the window length
        """
        window_start = self.window_start(now)
        try:
            allowed, count = self.store.hit(self._key(principal_id), window_start, self.config.max_requests)
        except Exception:
            logger.warning(
                "rate_limiter_unavailable",
                principal_id=principal_id,
                fail_open=self.config.fail_open,
                exc_info=True,
            )
            if self.config.fail_open:
                return RateLimitDecision(allowed=True, degraded=True)
            return RateLimitDecision(allowed=False, retry_after=self.config.window_seconds, degraded=True)

        if not allowed:
            logger.info("rate_limited", principal_id=principal_id, count=count, window_start=window_start)
            return RateLimitDecision(allowed=False, retry_after=self.config.window_seconds)
        return RateLimitDecision(allowed=True)

    def enforce(self, principal_id: str, now: Optional[float] = None) -> None:
        """Like check(), but raises on denial.

        Raises:
            RateLimited: If the principal has used up the current window
        """
        decision = self.check(principal_id, now)
        if not decision.allowed:
            raise RateLimited(retry_after=decision.retry_after or self.config.window_seconds)

    def status(self, principal_id: str, now: Optional[float] = None) -> RateLimitStatus:
        window_start = self.window_start(now)
        count = self.store.get_count(self._key(principal_id), window_start)
        return RateLimitStatus(
            count=count,
            limit=self.config.max_requests,
            remaining=max(0, self.config.max_requests - count),
            reset_at=datetime.fromtimestamp(window_start + self.config.window_seconds),
        )

    def cleanup(self, max_age_seconds: int = DEFAULT_CLEANUP_AGE_SECONDS, now: Optional[float] = None) -> int:
        """Delete expired windows. Returns the number removed."""
        now = time.time() if now is None else now
        removed = self.store.cleanup(int(now) - max_age_seconds)
        logger.info("rate_windows_cleaned", removed=removed)
        return removed
