"""Tests for the fixed-window rate limiter."""

import asyncio

import pytest

from backend.src.core.rate_limit import RateLimiter, RateLimitPolicies, RateLimitPolicy
from backend.tests.mocks import FakeTime


@pytest.fixture
def clock():
    return FakeTime()


@pytest.fixture
def limiter(clock):
    return RateLimiter(clock=clock, cleanup_interval=0.01)


class TestCheck:
    def test_allows_exactly_max_requests_per_window(self, limiter):
        results = [limiter.check("ip:1", 5, 60_000) for _ in range(5)]

        assert all(r.allowed for r in results)
        assert [r.remaining for r in results] == [4, 3, 2, 1, 0]

        blocked = limiter.check("ip:1", 5, 60_000)
        assert not blocked.allowed
        assert blocked.remaining == 0

    def test_window_resets_after_expiry(self, limiter, clock):
        for _ in range(3):
            limiter.check("ip:1", 2, 60_000)
        assert not limiter.check("ip:1", 2, 60_000).allowed

        clock.advance(61)
        result = limiter.check("ip:1", 2, 60_000)
        assert result.allowed
        assert result.remaining == 1

    def test_keys_are_independent(self, limiter):
        limiter.check("ip:1", 1, 60_000)
        assert not limiter.check("ip:1", 1, 60_000).allowed
        assert limiter.check("ip:2", 1, 60_000).allowed

    def test_retry_after_and_headers(self, limiter, clock):
        limiter.check("k", 1, 60_000)
        clock.advance(20)
        result = limiter.check("k", 1, 60_000)

        assert result.retry_after == 40
        assert result.headers() == {
            "X-RateLimit-Limit": "1",
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(int(clock.current + 40)),
        }

    def test_policy_keys_are_namespaced(self, limiter):
        policy = RateLimitPolicy(name="login", max_requests=1, window_seconds=900)
        limiter.check_policy(policy, "10.0.0.1")
        assert not limiter.check_policy(policy, "10.0.0.1").allowed
        assert limiter.check("10.0.0.1", 1, 60_000).allowed


class TestPolicies:
    def test_default_policy_values(self):
        policies = RateLimitPolicies()
        assert (policies.merchant.max_requests, policies.merchant.window_seconds) == (100, 60)
        assert (policies.widget_ip.max_requests, policies.widget_ip.window_seconds) == (20, 60)
        assert (policies.login.max_requests, policies.login.window_seconds) == (5, 900)
        assert policies.login.window_ms == 900_000


class TestCleanup:
    def test_cleanup_drops_only_expired_buckets(self, limiter, clock):
        limiter.check("old", 10, 1_000)
        clock.advance(5)
        limiter.check("fresh", 10, 60_000)

        assert limiter.cleanup() == 1
        assert len(limiter) == 1

    @pytest.mark.asyncio
    async def test_timer_runs_without_traffic_and_start_is_idempotent(self, limiter, clock):
        limiter.check("old", 10, 1_000)
        clock.advance(5)

        limiter.start()
        task = limiter._cleanup_task
        limiter.start()
        assert limiter._cleanup_task is task

        for _ in range(50):
            if len(limiter) == 0:
                break
            await asyncio.sleep(0.01)
        assert len(limiter) == 0

        await limiter.stop()
        assert not limiter.is_running
        await limiter.stop()
