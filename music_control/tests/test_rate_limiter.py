"""Tests for the in-memory rate limiter."""

from __future__ import annotations

from conftest import FakeClock
from music_control.rate_limiter import InMemoryRateLimiter


class TestInMemoryRateLimiter:
    """Unit tests for the sliding-window rate limiter."""

    def test_allows_up_to_limit(self) -> None:
        limiter = InMemoryRateLimiter(max_requests=3, window_seconds=60)
        assert limiter.check("client-a") is True
        assert limiter.check("client-a") is True
        assert limiter.check("client-a") is True

    def test_blocks_over_limit(self) -> None:
        limiter = InMemoryRateLimiter(max_requests=2, window_seconds=60)
        limiter.check("client-a")
        limiter.check("client-a")
        assert limiter.check("client-a") is False

    def test_separate_keys_are_independent(self) -> None:
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60)
        assert limiter.check("client-a") is True
        assert limiter.check("client-b") is True
        assert limiter.check("client-a") is False

    def test_window_slides(self) -> None:
        clock = FakeClock(start=100.0)
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60, clock=clock)
        assert limiter.check("client-a") is True
        assert limiter.check("client-a") is False

        clock.advance(61)
        assert limiter.check("client-a") is True

    def test_remaining(self) -> None:
        clock = FakeClock(start=0.0)
        limiter = InMemoryRateLimiter(max_requests=5, window_seconds=60, clock=clock)
        assert limiter.remaining("client-a") == 5
        limiter.check("client-a")
        limiter.check("client-a")
        assert limiter.remaining("client-a") == 3

        clock.advance(61)
        assert limiter.remaining("client-a") == 5

    def test_prune_drops_idle_keys(self) -> None:
        clock = FakeClock(start=0.0)
        limiter = InMemoryRateLimiter(max_requests=5, window_seconds=60, clock=clock)
        limiter.check("old")
        clock.advance(61)
        limiter.check("fresh")

        assert limiter.prune() == 1
        assert len(limiter) == 1
        assert limiter.remaining("fresh") == 4

    def test_reset_clears_state(self) -> None:
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60)
        limiter.check("client-a")
        assert limiter.check("client-a") is False
        limiter.reset()
        assert limiter.check("client-a") is True
