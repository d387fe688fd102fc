"""Agent loop controller.

Drives one task to completion: ask the provider for the next step, execute
the requested tools in order, feed the results back, and stop on a final
text answer, an unrecoverable error or the iteration limit.
"""

import json
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from toolpilot.ai_providers.base import ProviderResponse
from toolpilot.execution.errors import (
    DEFAULT_TRANSIENT_DELAY,
    AgentError,
    ErrorKind,
    classify_error,
)
from toolpilot.execution.gateway import MalformedArgumentsError, parse_arguments
from toolpilot.execution.types import (
    AgentOutcome,
    AgentResult,
    ExecutionContext,
    Message,
    TokenUsage,
    ToolCall,
    ToolResult,
)
from toolpilot.utils.logger import bind_run_context, clear_run_context, get_logger
from toolpilot.utils.retry import NETWORK_RETRY

if TYPE_CHECKING:
    from toolpilot.execution.runtime import AgentRuntime

logger = get_logger(__name__)

HIGH_FREQUENCY_TOOLS = frozenset({"read_file", "list_files", "git_status"})
DEFAULT_DUPLICATE_LIMIT = 3
HIGH_FREQUENCY_DUPLICATE_LIMIT = 6
RECENT_OPERATIONS_SIZE = 10

COMPLETION_STREAK = 2
SESSION_CONTEXT_MESSAGES = 4
FILE_TOOLS = frozenset({"read_file", "write_file", "edit_file"})

DUPLICATE_MESSAGE = "Please try a different approach to complete this task."
MAX_ITERATIONS_MESSAGE = "Task did not complete within the maximum number of iterations"
CONFIRMATION_PROMPT = (
    "If the task is complete, reply with your final answer. "
    "Otherwise continue by calling the tools you need."
)


class LoopState(Enum):
    AWAITING_RESPONSE = "awaiting_response"
    DISPATCHING_TOOLS = "dispatching_tools"
    TERMINAL = "terminal"


class RecentOperations:
    """Counts identical tool calls (same name and arguments) within a run.

    Only the most recent ``max_keys`` distinct calls are remembered.
    """

    def __init__(self, max_keys: int = RECENT_OPERATIONS_SIZE):
        self.max_keys = max_keys
        self._counts: "OrderedDict[str, int]" = OrderedDict()

    @staticmethod
    def key(call: ToolCall) -> str:
        return f"{call.name}:{call.arguments}"

    @staticmethod
    def limit_for(name: str) -> int:
        if name in HIGH_FREQUENCY_TOOLS:
            return HIGH_FREQUENCY_DUPLICATE_LIMIT
        return DEFAULT_DUPLICATE_LIMIT

    def count(self, call: ToolCall) -> int:
        return self._counts.get(self.key(call), 0)

    def is_duplicate(self, call: ToolCall) -> bool:
        return self.count(call) >= self.limit_for(call.name)

    def record(self, call: ToolCall) -> None:
        key = self.key(call)
        self._counts[key] = self._counts.get(key, 0) + 1
        self._counts.move_to_end(key)
        while len(self._counts) > self.max_keys:
            self._counts.popitem(last=False)

    def __len__(self) -> int:
        return len(self._counts)


@dataclass
class _Run:
    """Mutable state of one :meth:`AgentLoopController.run` call."""

    context: ExecutionContext
    messages: List[Message]
    tool_specs: Optional[List[Dict[str, Any]]]
    iterations: int = 0
    tool_call_count: int = 0
    tokens: TokenUsage = field(default_factory=TokenUsage)
    no_tool_streak: int = 0
    recent: RecentOperations = field(default_factory=RecentOperations)


class AgentLoopController:
    """Runs tasks against the provider, tools and session held by a runtime."""

    def __init__(self, runtime: "AgentRuntime"):
        self.runtime = runtime
        self._state = LoopState.TERMINAL

    @property
    def state(self) -> LoopState:
        return self._state

    async def run(
        self,
        task: str,
        tools: Optional[List[str]] = None,
        max_iterations: Optional[int] = None,
    ) -> AgentResult:
        """
        Execute ``task`` until it completes, fails or runs out of iterations.

        Args:
            task: User request
            tools: Optional names restricting which registered tools are offered
            max_iterations: Override of the configured iteration limit

        Returns:
            AgentResult; errors are reported through its outcome, never raised
        """
        runtime = self.runtime
        max_iterations = max_iterations or runtime.max_iterations
        bind_run_context(session_id=runtime.session_id)
        runtime.budget.reset()
        self._state = LoopState.AWAITING_RESPONSE

        run = _Run(
            context=runtime.new_context(),
            messages=[],
            tool_specs=runtime.registry.get_specs(tools) or None,
        )
        try:
            run.messages = await self._prepare_messages(task)
            if not runtime.provider.supports_tools():
                result = await self._run_single_shot(run)
            else:
                result = await self._run_loop(run, max_iterations)
        except Exception as e:
            logger.exception(f"Agent run aborted: {e}")
            result = self._finish(run, AgentOutcome.FAILED, f"Execution failed: {e}")
        finally:
            self._state = LoopState.TERMINAL

        if runtime.event_log is not None:
            runtime.event_log.append_run_finished(result.to_dict())
        logger.info(
            f"Run finished: {result.outcome.value} after {result.iterations} iteration(s), "
            f"{result.tool_call_count} tool call(s), {result.tokens.total_tokens} tokens"
        )
        clear_run_context()
        return result

    async def _prepare_messages(self, task: str) -> List[Message]:
        runtime = self.runtime
        store = runtime.session_store

        await runtime.compressor.compress_session(store)

        history = [m for m in store.get_history() if m.role != "system"]
        prior = history[-SESSION_CONTEXT_MESSAGES:]
        while prior and prior[0].role == "tool":
            prior.pop(0)

        # The system prompt always carries the current task marker
        store.set_current_task(task)
        system_prompt = f"{runtime.system_prompt}\n\n## Session Context\n{store.get_summary()}"

        user_message = Message(role="user", content=task)
        store.add_message(user_message)
        return [Message(role="system", content=system_prompt), *prior, user_message]

    async def _run_single_shot(self, run: _Run) -> AgentResult:
        """Providers without tool support get one plain request."""
        runtime = self.runtime
        run.iterations = 1
        request = [run.messages[0], run.messages[-1]]
        try:
            content = await runtime.send_text(request)
        except AgentError as error:
            return self._finish(run, AgentOutcome.FAILED, f"Execution failed: {error.message}")

        self._remember(run, Message(role="assistant", content=content))
        return self._finish(run, AgentOutcome.COMPLETED, content)

    async def _run_loop(self, run: _Run, max_iterations: int) -> AgentResult:
        runtime = self.runtime

        for iteration in range(1, max_iterations + 1):
            run.iterations = iteration
            await self._maybe_compact(run, iteration)

            self._state = LoopState.AWAITING_RESPONSE
            try:
                response = await self._request(run, iteration)
            except AgentError as error:
                if error.kind is ErrorKind.TRANSIENT and iteration < max_iterations:
                    delay = error.retry_after or DEFAULT_TRANSIENT_DELAY
                    logger.warning(
                        f"Transient provider error, retrying in {delay:.1f}s: {error.message}"
                    )
                    await runtime.sleep(delay)
                    continue
                logger.error(f"Provider request failed ({error.kind.value}): {error.message}")
                return self._finish(
                    run, AgentOutcome.FAILED, f"Execution failed: {error.message}"
                )

            if response.is_tool_call:
                run.no_tool_streak = 0
                self._remember(
                    run,
                    Message(
                        role="assistant",
                        content=response.content,
                        tool_calls=list(response.tool_calls),
                    ),
                )
                await self._dispatch(run, response.tool_calls, iteration)
                continue

            run.no_tool_streak += 1
            done = await self._completion(run, response, iteration)
            if done is not None:
                return done

        return self._finish(run, AgentOutcome.MAX_ITERATIONS, MAX_ITERATIONS_MESSAGE)

    async def _completion(
        self, run: _Run, response: ProviderResponse, iteration: int
    ) -> Optional[AgentResult]:
        """Handle a text reply; returns the final result when the run is done."""
        parser = self.runtime.inline_parser
        text = response.content

        if run.no_tool_streak < COMPLETION_STREAK and parser.has_markers(text):
            calls = parser.parse(text)
            if calls:
                logger.info(f"Executing {len(calls)} inline tool call(s) from text reply")
                self._remember(
                    run, Message(role="assistant", content=text, tool_calls=calls)
                )
                await self._dispatch(run, calls, iteration)
                return None

        final = parser.strip(text) if parser.enabled else text
        final = final or text
        if run.no_tool_streak >= COMPLETION_STREAK or run.tool_call_count > 0:
            self._remember(run, Message(role="assistant", content=final))
            return self._finish(run, AgentOutcome.COMPLETED, final)

        # First reply is text before any tool use: ask once for confirmation
        self._remember(run, Message(role="assistant", content=final))
        self._remember(run, Message(role="user", content=CONFIRMATION_PROMPT))
        return None

    async def _request(self, run: _Run, iteration: int) -> ProviderResponse:
        """Call the provider through the rate limiter and retry manager."""
        runtime = self.runtime
        provider = runtime.provider
        limiter = runtime.rate_limiter_for(provider.name, provider.model_id)
        estimate = runtime.estimator.estimate_messages(run.messages, run.tool_specs)

        async def attempt() -> ProviderResponse:
            async with limiter.transaction(estimate) as ticket:
                response = await provider.send_with_tools(run.messages, run.tool_specs)
                usage = response.usage or TokenUsage()
                await ticket.record(usage.total_tokens)
            return response

        outcome = await runtime.retry_manager.execute_with_retry(
            attempt, NETWORK_RETRY, on_retry=self._log_retry
        )
        if not outcome.success:
            raise classify_error(outcome.error)

        response: ProviderResponse = outcome.result
        if response.usage is not None:
            run.tokens.add(response.usage)
            runtime.budget.add_usage(response.usage)

        if runtime.event_log is not None:
            runtime.event_log.append_provider_call(
                iteration,
                (response.usage or TokenUsage()).to_dict(),
                response.type.value,
                response.content,
                tool_names=[tc.name for tc in response.tool_calls],
                attempts=outcome.attempts,
            )
        return response

    async def _dispatch(self, run: _Run, calls: List[ToolCall], iteration: int) -> None:
        """Execute ``calls`` sequentially, appending one tool message per call."""
        runtime = self.runtime
        self._state = LoopState.DISPATCHING_TOOLS

        for call in calls:
            run.tool_call_count += 1
            skipped = run.recent.is_duplicate(call)
            if skipped:
                logger.warning(
                    f"Skipping repeated call to {call.name} "
                    f"({run.recent.count(call)} identical calls already made)"
                )
                result = ToolResult.failure(
                    DUPLICATE_MESSAGE, tool=call.name, error_type=ErrorKind.DUPLICATE.value
                )
            else:
                run.recent.record(call)
                if run.context.verbose:
                    logger.info(
                        f"Calling {call.name} with {format_tool_arguments(call.arguments)}"
                    )
                result = await runtime.gateway.execute_call(call, run.context)
                if result.success:
                    self._track_working_file(call)

            if runtime.event_log is not None:
                runtime.event_log.append_tool_execution(
                    iteration,
                    call.name,
                    call.arguments,
                    result.success,
                    result.content if result.success else (result.error or ""),
                    skipped=skipped,
                )
            self._remember(
                run,
                Message(
                    role="tool",
                    content=result.to_json(),
                    tool_call_id=call.id,
                    name=call.name,
                ),
            )

    def _track_working_file(self, call: ToolCall) -> None:
        if call.name not in FILE_TOOLS:
            return
        try:
            args, _ = parse_arguments(call.arguments)
        except MalformedArgumentsError:
            return
        path = self.runtime.gateway.target_path(args)
        if path:
            self.runtime.session_store.add_working_file(path)

    async def _maybe_compact(self, run: _Run, iteration: int) -> None:
        runtime = self.runtime
        budget = runtime.budget
        if not budget.should_auto_compact():
            return

        store = runtime.session_store
        result = await runtime.compressor.compress(run.messages, context=store.get_summary())
        run.messages = result.messages
        record = result.record.to_dict()
        store.update_metadata("lastCompression", record)
        budget.mark_compacted()
        if runtime.event_log is not None:
            runtime.event_log.append_compression(iteration, record, "budget")

        remaining = runtime.estimator.estimate_messages(run.messages, run.tool_specs)
        if not budget.can_afford(remaining):
            error = AgentError(
                ErrorKind.BUDGET_EXHAUSTED,
                f"Token budget at {budget.percentage:.1f}% after compaction",
            )
            logger.warning(f"{error.message}, continuing")

    def _remember(self, run: _Run, message: Message) -> None:
        run.messages.append(message)
        self.runtime.session_store.add_message(message)

    def _finish(self, run: _Run, outcome: AgentOutcome, content: str) -> AgentResult:
        self._state = LoopState.TERMINAL
        return AgentResult(
            outcome=outcome,
            content=content,
            iterations=run.iterations,
            tool_call_count=run.tool_call_count,
            tokens=run.tokens.copy(),
        )

    @staticmethod
    def _log_retry(attempt: int, error: BaseException, delay: float) -> None:
        logger.warning(f"Provider call failed ({error}), attempt {attempt} in {delay:.1f}s")


def format_tool_arguments(arguments: str) -> str:
    """Pretty-print raw tool arguments for verbose output."""
    try:
        return json.dumps(json.loads(arguments), indent=2)
    except (TypeError, ValueError):
        return arguments
