"""Tests for the sliding-window rate limiter."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from toolpilot.execution.rate_limiter import (
    DEFAULT_RATE_LIMIT,
    MIN_LIMIT_DELAY_SECONDS,
    MIN_REQUEST_SPACING_SECONDS,
    RateLimitConfig,
    RateLimiter,
    get_rate_limit_config,
)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _limiter(tpm=1000, rpm=30, burst=0.8, clock=None, sleep=None):
    return RateLimiter(
        "test-model",
        RateLimitConfig(tokens_per_minute=tpm, requests_per_minute=rpm, burst_allowance=burst),
        clock=clock or FakeClock(),
        sleep=sleep or AsyncMock(),
    )


class TestRateLimitConfig:
    """Test limit resolution."""

    def test_effective_limits(self):
        config = RateLimitConfig(tokens_per_minute=1000, requests_per_minute=30)
        assert config.token_limit == 800
        assert config.request_limit == 24

    def test_known_model(self):
        config = get_rate_limit_config("llama-3.3-70b-versatile")
        assert config.tokens_per_minute == 6000
        assert config.requests_per_minute == 30

    def test_unknown_model_uses_default(self):
        assert get_rate_limit_config("mystery-model") == DEFAULT_RATE_LIMIT
        assert DEFAULT_RATE_LIMIT.tokens_per_minute == 5000
        assert DEFAULT_RATE_LIMIT.burst_allowance == 0.8

    def test_override(self):
        config = get_rate_limit_config(
            "llama-3.3-70b-versatile", {"llama-3.3-70b-versatile": {"tokens_per_minute": 12000}}
        )
        assert config.tokens_per_minute == 12000
        assert config.requests_per_minute == 30


class TestShouldDelay:
    """Test delay computation."""

    @pytest.mark.asyncio
    async def test_third_request_in_window_is_delayed(self):
        """Three 400-token checks within a second exceed 1000 * 0.8."""
        clock = FakeClock()
        limiter = _limiter(clock=clock)

        first = await limiter.should_delay(400)
        clock.advance(0.2)
        second = await limiter.should_delay(400)
        clock.advance(0.2)
        third = await limiter.should_delay(400)

        assert first == 0.0
        assert second == 0.0
        assert third > 0

    @pytest.mark.asyncio
    async def test_back_to_back_calls_see_reservations(self):
        limiter = _limiter()

        await limiter.should_delay(400)
        await limiter.should_delay(400)
        third = await limiter.should_delay(400)

        assert third >= MIN_LIMIT_DELAY_SECONDS

    @pytest.mark.asyncio
    async def test_limit_delay_waits_for_oldest_record(self):
        clock = FakeClock()
        limiter = _limiter(clock=clock)
        await limiter.should_delay(700)
        await limiter.record_request(700)
        clock.advance(10)

        delay = await limiter.should_delay(200)

        # Oldest record expires 50s from now, plus the safety buffer
        assert delay == pytest.approx(51.0)

    @pytest.mark.asyncio
    async def test_minimum_spacing(self):
        clock = FakeClock()
        limiter = _limiter(tpm=100000, clock=clock)
        await limiter.should_delay(10)
        await limiter.record_request(10)
        clock.advance(0.05)

        assert await limiter.should_delay(10) == MIN_REQUEST_SPACING_SECONDS

    @pytest.mark.asyncio
    async def test_request_count_limit(self):
        clock = FakeClock()
        limiter = _limiter(tpm=1000000, rpm=5, clock=clock)
        for _ in range(4):
            await limiter.should_delay(1)
            await limiter.record_request(1)
            clock.advance(1)

        assert await limiter.should_delay(1) >= MIN_LIMIT_DELAY_SECONDS

    @pytest.mark.asyncio
    async def test_window_expiry(self):
        clock = FakeClock()
        limiter = _limiter(clock=clock)
        await limiter.should_delay(700)
        await limiter.record_request(700)
        clock.advance(61)

        assert await limiter.should_delay(700) == 0.0


class TestRecording:
    """Test committing usage."""

    @pytest.mark.asyncio
    async def test_actual_usage_supersedes_estimate(self):
        limiter = _limiter()
        await limiter.should_delay(500)
        await limiter.record_request(120)

        status = limiter.get_status()
        assert status["tokens"] == 120
        assert status["requests"] == 1
        assert limiter.committed_tokens == 120

    @pytest.mark.asyncio
    async def test_cancel_commits_zero_tokens(self):
        limiter = _limiter()
        await limiter.should_delay(500)
        await limiter.cancel_request()

        status = limiter.get_status()
        assert status["tokens"] == 0
        assert status["requests"] == 1
        assert limiter.committed_requests == 1

    @pytest.mark.asyncio
    async def test_record_without_reservation_appends(self):
        limiter = _limiter()
        await limiter.record_request(50)
        assert limiter.get_status()["tokens"] == 50


class TestTransaction:
    """Test the admission context manager."""

    @pytest.mark.asyncio
    async def test_records_usage(self):
        sleep = AsyncMock()
        limiter = _limiter(sleep=sleep)

        async with limiter.transaction(300) as ticket:
            await ticket.record(250)

        assert limiter.committed_tokens == 250
        assert limiter.get_status()["tokens"] == 250
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sleeps_computed_delay(self):
        sleep = AsyncMock()
        limiter = _limiter(sleep=sleep)
        async with limiter.transaction(700) as ticket:
            await ticket.record(700)

        async with limiter.transaction(400) as ticket:
            assert ticket.delay >= MIN_LIMIT_DELAY_SECONDS
            await ticket.record(400)

        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_cancels_reservation(self):
        limiter = _limiter()

        with pytest.raises(RuntimeError):
            async with limiter.transaction(600):
                raise RuntimeError("provider down")

        status = limiter.get_status()
        assert status["tokens"] == 0
        assert status["requests"] == 1
        assert limiter.committed_tokens == 0

    @pytest.mark.asyncio
    async def test_concurrent_transactions_are_serialized(self):
        limiter = _limiter(tpm=10000)
        events = []

        async def worker(n: int, tokens: int):
            async with limiter.transaction(50) as ticket:
                events.append(("start", n))
                # Yield so an unserialized worker would interleave here
                await asyncio.sleep(0)
                await asyncio.sleep(0)
                await ticket.record(tokens)
                events.append(("end", n))

        await asyncio.gather(worker(0, 100), worker(1, 200), worker(2, 300))

        assert events == [
            ("start", 0),
            ("end", 0),
            ("start", 1),
            ("end", 1),
            ("start", 2),
            ("end", 2),
        ]
        assert limiter.committed_tokens == 600
        assert limiter.committed_requests == 3
        assert limiter.get_status()["tokens"] == 600
        assert limiter.get_status()["requests"] == 3
