"""Agent runtime.

One :class:`AgentRuntime` is built per process (or per session) and handed to
the loop controller. It owns every long-lived collaborator: settings,
provider, tool registry and gateway, budget tracker, memory compressor,
session store, optional trace log and the per-model rate limiters.
"""

import asyncio
import os
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from toolpilot.ai_providers.base import BaseProvider
from toolpilot.ai_providers.factory import create_provider, get_provider_config
from toolpilot.config.settings import Settings
from toolpilot.execution.budget import BudgetTracker
from toolpilot.execution.errors import classify_error
from toolpilot.execution.event_log import EventLog
from toolpilot.execution.gateway import ToolExecutionGateway
from toolpilot.execution.inline_calls import InlineToolCallParser
from toolpilot.execution.memory import (
    CompressionMethod,
    MemoryCompressor,
    MemoryConfig,
    ProviderSummarizer,
)
from toolpilot.execution.rate_limiter import RateLimiter, get_rate_limit_config
from toolpilot.execution.session import SessionStore
from toolpilot.execution.types import ExecutionContext, Message
from toolpilot.tools.file_tools import register_file_tools
from toolpilot.tools.registry import ToolRegistry
from toolpilot.utils.logger import get_logger
from toolpilot.utils.retry import NETWORK_RETRY, RetryManager
from toolpilot.utils.token_utils import ConservativeTokenEstimator, TokenEstimator

logger = get_logger(__name__)

TRACE_SUBDIR = "traces"


def _log_retry(attempt: int, error: BaseException, delay: float) -> None:
    logger.warning(f"Provider call failed ({error}), attempt {attempt} in {delay:.1f}s")


class AgentRuntime:
    """Explicit container for the engine's shared state."""

    def __init__(
        self,
        provider: BaseProvider,
        settings: Optional[Settings] = None,
        registry: Optional[ToolRegistry] = None,
        working_directory: Optional[str] = None,
        session_id: Optional[str] = None,
        budget: Optional[BudgetTracker] = None,
        compressor: Optional[MemoryCompressor] = None,
        estimator: Optional[TokenEstimator] = None,
        event_log: Optional[EventLog] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or Settings()
        self.provider = provider
        self.sleep = sleep
        self.clock = clock
        self.working_directory = os.path.abspath(
            working_directory or self.settings.working_directory
        )

        self.registry = registry if registry is not None else register_file_tools()
        self.gateway = ToolExecutionGateway(self.registry, clock=clock)
        self.retry_manager = RetryManager(sleep=sleep, clock=clock)
        self.estimator = estimator or ConservativeTokenEstimator()
        self.inline_parser = InlineToolCallParser(self.settings.inline_tool_calls)

        self.budget = budget or BudgetTracker(
            budget=self.settings.token_budget,
            auto_compact_threshold=self.settings.auto_compact_threshold * 100,
        )
        self.compressor = compressor or MemoryCompressor(
            MemoryConfig(
                max_context_tokens=self.settings.max_context_tokens,
                auto_compact_threshold=self.settings.auto_compact_threshold,
                min_messages_before_compact=self.settings.min_messages_before_compact,
                preserve_recent_messages=self.settings.preserve_recent_messages,
                method=CompressionMethod(self.settings.compression_method),
            ),
            summarizer=ProviderSummarizer(provider, send=self.send_text),
        )

        self.session_store = SessionStore(self.working_directory)
        self.session = self.session_store.load_or_create(session_id)

        if event_log is None and self.settings.trace:
            event_log = EventLog(
                self.session.session_id,
                str(self.session_store.sessions_dir / TRACE_SUBDIR),
            )
        self.event_log = event_log

        self._rate_limit_overrides = self.settings.get_rate_limit_overrides()
        self._rate_limiters: Dict[Tuple[str, str], RateLimiter] = {}

        logger.info(
            f"Agent runtime ready: provider={provider.name} model={provider.model_id} "
            f"session={self.session.session_id} tools={len(self.registry)}"
        )

    @classmethod
    async def from_settings(
        cls,
        settings: Settings,
        session_id: Optional[str] = None,
        registry: Optional[ToolRegistry] = None,
    ) -> "AgentRuntime":
        """Create the configured provider, initialize it and build a runtime."""
        provider = create_provider(settings.ai_provider, get_provider_config(settings))
        await provider.initialize()
        return cls(provider, settings=settings, registry=registry, session_id=session_id)

    @property
    def session_id(self) -> str:
        return self.session_store.current.session_id

    @property
    def max_iterations(self) -> int:
        return self.settings.max_iterations

    @property
    def system_prompt(self) -> str:
        return self.settings.system_prompt

    def rate_limiter_for(self, provider: str, model: str) -> RateLimiter:
        """The limiter for a (provider, model) pair, created on first use."""
        key = (provider, model)
        limiter = self._rate_limiters.get(key)
        if limiter is None:
            limiter = RateLimiter(
                model,
                get_rate_limit_config(model, self._rate_limit_overrides),
                clock=self.clock,
                sleep=self.sleep,
            )
            self._rate_limiters[key] = limiter
        return limiter

    async def send_text(self, messages: List[Message]) -> str:
        """
        Plain ``send`` through the provider's rate limiter and the retry manager.

        The request is charged to the limiter with zero tokens since ``send``
        reports no usage. Raises :class:`AgentError` once retries are exhausted.
        """
        provider = self.provider
        limiter = self.rate_limiter_for(provider.name, provider.model_id)
        estimate = self.estimator.estimate_messages(messages)

        async def attempt() -> str:
            async with limiter.transaction(estimate):
                return await provider.send(messages)

        outcome = await self.retry_manager.execute_with_retry(
            attempt, NETWORK_RETRY, on_retry=_log_retry
        )
        if not outcome.success:
            raise classify_error(outcome.error)
        return outcome.result or ""

    def new_context(self) -> ExecutionContext:
        settings = self.settings
        return ExecutionContext(
            working_directory=self.working_directory,
            session_id=self.session_id,
            auto_approve=settings.auto_approve,
            headless=settings.headless,
            ci=settings.ci,
            verbose=settings.verbose,
            trace=settings.trace,
        )

    async def shutdown(self) -> None:
        self.session_store.save()
        await self.provider.shutdown()

    async def __aenter__(self) -> "AgentRuntime":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
