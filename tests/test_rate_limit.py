"""
Unit tests for fixed-window rate limiting.
"""

from unittest.mock import Mock

import pytest

from collab_core.config.loader import RateLimitConfig
from collab_core.core.rate_limit import RateLimiter
from collab_core.errors import RateLimited
from collab_core.storage.memory import InMemoryRateWindowStore

# Aligned to a 60 second boundary
T0 = 1_700_000_040.0


class TestRateLimiter:
    """Test window counting."""

    def setup_method(self):
        self.store = InMemoryRateWindowStore()
        self.limiter = RateLimiter(self.store, RateLimitConfig())

    def test_window_start_aligned(self):
        assert self.limiter.window_start(T0 + 59.9) == int(T0)
        assert self.limiter.window_start(T0 + 60) == int(T0) + 60

    def test_thirty_allowed_thirty_first_denied(self):
        for _ in range(30):
            assert self.limiter.check("alice", now=T0).allowed

        decision = self.limiter.check("alice", now=T0 + 10)
        assert not decision.allowed
        assert decision.retry_after > 0

    def test_next_window_allowed(self):
        for _ in range(31):
            self.limiter.check("alice", now=T0)
        assert self.limiter.check("alice", now=T0 + 60).allowed

    def test_principals_counted_separately(self):
        for _ in range(30):
            self.limiter.check("alice", now=T0)
        assert self.limiter.check("bob", now=T0).allowed

    def test_scopes_counted_separately(self):
        other = RateLimiter(self.store, RateLimitConfig(), scope="ai_gateway")
        for _ in range(30):
            self.limiter.check("alice", now=T0)
        assert other.check("alice", now=T0).allowed

    def test_enforce_raises(self):
        limiter = RateLimiter(self.store, RateLimitConfig(max_requests=1))
        limiter.enforce("alice", now=T0)

        with pytest.raises(RateLimited) as exc_info:
            limiter.enforce("alice", now=T0)
        assert exc_info.value.retry_after == 60
        assert exc_info.value.status == 429

    def test_status(self):
        for _ in range(5):
            self.limiter.check("alice", now=T0)

        status = self.limiter.status("alice", now=T0)

        assert status.count == 5
        assert status.limit == 30
        assert status.remaining == 25

    def test_cleanup_removes_old_windows(self):
        self.limiter.check("alice", now=T0)
        self.limiter.check("alice", now=T0 + 7200)

        removed = self.limiter.cleanup(max_age_seconds=3600, now=T0 + 7200)

        assert removed == 1
        assert self.limiter.status("alice", now=T0).count == 0
        assert self.limiter.status("alice", now=T0 + 7200).count == 1


class TestLimiterOutage:
    """Test behavior when the window store fails."""

    def _failing_store(self):
        store = Mock()
        store.hit.side_effect = RuntimeError("database unavailable")
        return store

    def test_fail_open(self):
        limiter = RateLimiter(self._failing_store(), RateLimitConfig(fail_open=True))

        decision = limiter.check("alice", now=T0)

        assert decision.allowed
        assert decision.degraded

    def test_fail_closed(self):
        limiter = RateLimiter(self._failing_store(), RateLimitConfig(fail_open=False))

        decision = limiter.check("alice", now=T0)

        assert not decision.allowed
        assert decision.degraded
        with pytest.raises(RateLimited):
            limiter.enforce("alice", now=T0)


class TestRateLimitConfig:

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            RateLimitConfig(window_seconds=0)
        with pytest.raises(ValueError):
            RateLimitConfig(max_requests=0)
