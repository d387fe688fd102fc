"""Sliding-window rate limiter for provider requests.

Each (provider, model) pair owns one :class:`RateLimiter`. Before a request
the caller asks how long to wait for an estimated token count; after the
request it records the provider-reported usage, which replaces the estimate.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from toolpilot.utils.logger import get_logger

logger = get_logger(__name__)

WINDOW_SECONDS = 60.0
SAFETY_BUFFER_SECONDS = 1.0
MIN_LIMIT_DELAY_SECONDS = 2.0
MIN_REQUEST_SPACING_SECONDS = 0.1


@dataclass(frozen=True)
class RateLimitConfig:
    """Nominal per-minute limits and the fraction of them actually used."""

    tokens_per_minute: int = 5000
    requests_per_minute: int = 30
    burst_allowance: float = 0.8

    @property
    def token_limit(self) -> float:
        return self.tokens_per_minute * self.burst_allowance

    @property
    def request_limit(self) -> float:
        return self.requests_per_minute * self.burst_allowance


DEFAULT_RATE_LIMIT = RateLimitConfig()

MODEL_RATE_LIMITS: Dict[str, RateLimitConfig] = {
    "openai/gpt-oss-20b": RateLimitConfig(250000, 30),
    "llama-3.1-70b-versatile": RateLimitConfig(6000, 30),
    "llama-3.3-70b-versatile": RateLimitConfig(6000, 30),
    "llama-3.1-8b-instant": RateLimitConfig(30000, 30),
    "mixtral-8x7b-32768": RateLimitConfig(5000, 30),
    "gemma-7b-it": RateLimitConfig(30000, 30),
}


def get_rate_limit_config(
    model: str, overrides: Optional[Dict[str, Dict[str, Any]]] = None
) -> RateLimitConfig:
    """Resolve limits for ``model``, applying any configured override."""
    base = MODEL_RATE_LIMITS.get(model, DEFAULT_RATE_LIMIT)
    override = (overrides or {}).get(model)
    if not override:
        return base
    return RateLimitConfig(
        tokens_per_minute=int(override.get("tokens_per_minute", base.tokens_per_minute)),
        requests_per_minute=int(
            override.get("requests_per_minute", base.requests_per_minute)
        ),
        burst_allowance=float(override.get("burst_allowance", base.burst_allowance)),
    )


@dataclass
class UsageRecord:
    timestamp: float
    tokens: int
    pending: bool = False


class RateLimitTicket:
    """Handle for one admitted request inside :meth:`RateLimiter.transaction`."""

    def __init__(self, limiter: "RateLimiter", delay: float):
        self._limiter = limiter
        self.delay = delay
        self.recorded = False

    async def record(self, actual_tokens: int) -> None:
        await self._limiter.record_request(actual_tokens)
        self.recorded = True


class RateLimiter:
    """Per-model sliding 60 second window of request token usage.

    ``should_delay`` reserves a provisional record for the estimate so that
    consecutive checks see each other; ``record_request`` commits the actual
    usage into the oldest reservation. Window access is serialized with an
    ``asyncio.Lock`` and :meth:`transaction` holds a second single-slot lock
    from the check until the usage is recorded.
    """

    def __init__(
        self,
        model: str,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.model = model
        self.config = config or get_rate_limit_config(model)
        self._clock = clock
        self._sleep = sleep
        self._records: List[UsageRecord] = []
        self._lock = asyncio.Lock()
        self._slot = asyncio.Lock()
        self.committed_tokens = 0
        self.committed_requests = 0

    def _purge(self, now: float) -> None:
        cutoff = now - WINDOW_SECONDS
        self._records = [r for r in self._records if r.timestamp > cutoff]

    def _calculate_delay(self, estimated_tokens: int, now: float) -> float:
        recent_tokens = sum(r.tokens for r in self._records)
        recent_requests = len(self._records)

        exceeds_tokens = recent_tokens + estimated_tokens > self.config.token_limit
        exceeds_requests = recent_requests + 1 > self.config.request_limit

        if exceeds_tokens or exceeds_requests:
            wait = 0.0
            if self._records:
                wait = max(0.0, self._records[0].timestamp + WINDOW_SECONDS - now)
            return max(wait + SAFETY_BUFFER_SECONDS, MIN_LIMIT_DELAY_SECONDS)

        if self._records:
            since_last = now - self._records[-1].timestamp
            if since_last < MIN_REQUEST_SPACING_SECONDS:
                return MIN_REQUEST_SPACING_SECONDS

        return 0.0

    async def should_delay(self, estimated_tokens: int) -> float:
        """
        Compute the wait before issuing a request of ``estimated_tokens``.

        A provisional record is reserved at the time the request is expected
        to go out (now + delay).

        Returns:
            Delay in seconds (0.0 when the request may proceed immediately)
        """
        async with self._lock:
            now = self._clock()
            self._purge(now)
            delay = self._calculate_delay(estimated_tokens, now)
            self._records.append(
                UsageRecord(timestamp=now + delay, tokens=estimated_tokens, pending=True)
            )
            return delay

    async def record_request(self, actual_tokens: int) -> None:
        """Commit provider-reported usage, superseding the oldest reservation."""
        async with self._lock:
            now = self._clock()
            self._commit(now, actual_tokens)
            self.committed_tokens += actual_tokens

    async def cancel_request(self) -> None:
        """Commit the oldest reservation with zero tokens (request failed)."""
        async with self._lock:
            self._commit(self._clock(), 0)

    def _commit(self, now: float, tokens: int) -> None:
        self.committed_requests += 1
        for record in self._records:
            if record.pending:
                record.timestamp = now
                record.tokens = tokens
                record.pending = False
                return
        self._records.append(UsageRecord(timestamp=now, tokens=tokens))

    @asynccontextmanager
    async def transaction(self, estimated_tokens: int) -> AsyncIterator[RateLimitTicket]:
        """
        Admit one request: wait as required, yield a ticket, and make sure the
        reservation is committed (actual usage or zero) before the next
        transaction starts.
        """
        async with self._slot:
            delay = await self.should_delay(estimated_tokens)
            if delay > 0:
                if delay >= MIN_LIMIT_DELAY_SECONDS:
                    logger.info(
                        f"Rate limiting {self.model}: waiting {delay:.1f}s "
                        f"({self.get_status()['tokens_percent']}% of token limit used)"
                    )
                await self._sleep(delay)

            ticket = RateLimitTicket(self, delay)
            try:
                yield ticket
            finally:
                if not ticket.recorded:
                    await self.cancel_request()

    def get_status(self) -> Dict[str, Any]:
        """Usage within the current window, relative to the nominal limits."""
        cutoff = self._clock() - WINDOW_SECONDS
        recent = [r for r in self._records if r.timestamp > cutoff]
        tokens = sum(r.tokens for r in recent)
        return {
            "model": self.model,
            "tokens": tokens,
            "requests": len(recent),
            "tokens_percent": round(tokens / self.config.tokens_per_minute * 100),
            "requests_percent": round(
                len(recent) / self.config.requests_per_minute * 100
            ),
        }
