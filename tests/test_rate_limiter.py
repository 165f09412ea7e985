"""Tests for the sliding-window rate limiter."""

import pytest

from vetcare_mcp.services.rate_limiter import SlidingWindowRateLimiter


@pytest.fixture
def limiter(clock):
    return SlidingWindowRateLimiter(3, 60, enabled=True, clock=clock, sweep_probability=0)


class TestCheckLimit:
    def test_admits_up_to_ceiling_then_rejects(self, limiter):
        assert [limiter.check_limit("agent-1") for _ in range(3)] == [True, True, True]
        assert limiter.check_limit("agent-1") is False
        assert limiter.get_remaining_time("agent-1") > 0

    def test_identifiers_are_independent(self, limiter):
        for _ in range(3):
            limiter.check_limit("agent-1")
        assert limiter.check_limit("agent-2") is True

    def test_expired_timestamps_do_not_count(self, limiter, clock):
        for _ in range(3):
            limiter.check_limit("agent-1")
            clock.advance(10)
        assert limiter.check_limit("agent-1") is False

        # first admission (t=0) leaves the window at t=60
        clock.advance(30)
        assert limiter.check_limit("agent-1") is True
        assert limiter.check_limit("agent-1") is False

    def test_rejections_are_not_recorded(self, limiter, clock):
        for _ in range(3):
            limiter.check_limit("agent-1")
        for _ in range(5):
            limiter.check_limit("agent-1")
        clock.advance(60)
        assert limiter.check_limit("agent-1") is True
        assert limiter.stats()["rejected"] == 5

    def test_disabled_admits_everything(self, clock):
        limiter = SlidingWindowRateLimiter(1, 60, enabled=False, clock=clock)
        assert all(limiter.check_limit("x") for _ in range(10))

    def test_rejects_zero_ceiling(self):
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(0, 60)


class TestRemainingTime:
    def test_counts_from_oldest_timestamp_and_rounds_up(self, limiter, clock):
        for _ in range(3):
            limiter.check_limit("agent-1")
        clock.advance(20.5)
        assert limiter.get_remaining_time("agent-1") == 40

    def test_zero_for_unknown_identifier(self, limiter):
        assert limiter.get_remaining_time("nobody") == 0

    def test_zero_once_window_has_drained(self, limiter, clock):
        limiter.check_limit("agent-1")
        clock.advance(61)
        assert limiter.get_remaining_time("agent-1") == 0


class TestSweep:
    def test_drops_idle_identifiers(self, limiter, clock):
        limiter.check_limit("idle")
        clock.advance(45)
        limiter.check_limit("active")
        clock.advance(20)

        assert limiter.sweep() == 1
        assert limiter.tracked_identifiers == 1

    def test_probabilistic_sweep_on_check(self, clock):
        limiter = SlidingWindowRateLimiter(5, 60, enabled=True, clock=clock, sweep_probability=1)
        limiter.check_limit("idle")
        clock.advance(61)
        limiter.check_limit("active")
        assert limiter.tracked_identifiers == 1
