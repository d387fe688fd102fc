"""Base provider interface.

A provider turns a message list (and optional tool specs) into either a text
reply or a list of requested tool calls, plus token usage.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from toolpilot.execution.types import Message, TokenUsage, ToolCall
from toolpilot.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class ResponseType(Enum):
    TEXT = "text"
    TOOL_CALL = "tool_call"


class StopReason(Enum):
    end_of_turn = "end_of_turn"
    end_of_message = "end_of_message"
    out_of_tokens = "out_of_tokens"


@dataclass
class ProviderResponse:
    """Normalized provider reply."""

    type: ResponseType
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: Optional[TokenUsage] = None
    model: Optional[str] = None
    stop_reason: Optional[StopReason] = None

    @property
    def is_tool_call(self) -> bool:
        return self.type is ResponseType.TOOL_CALL and bool(self.tool_calls)


class ProviderError(Exception):
    """Non-retryable provider error (bad request, auth, unsupported model)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TemporaryServiceError(ProviderError):
    """Provider temporarily unavailable; safe to retry.

    Attributes:
        suggested_delay: Provider-suggested wait in seconds (e.g. Retry-After on 429)
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        suggested_delay: Optional[float] = None,
    ):
        super().__init__(message, status_code)
        self.suggested_delay = suggested_delay


def parse_retry_after(headers: Any) -> Optional[float]:
    """Read a Retry-After header (seconds) if present and numeric."""
    if not headers:
        return None
    value = headers.get("retry-after") or headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


class BaseProvider(ABC):
    """Abstract base class for chat-completion providers."""

    name = "base"

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.model_id = config.get("model_id", "default")
        self.timeout = float(config.get("timeout") or DEFAULT_TIMEOUT)
        self.temperature = float(config.get("temperature") or 0.0)
        self.max_tokens = int(config.get("max_tokens") or 4096)

    @abstractmethod
    async def initialize(self) -> None:
        """Create the underlying API client."""

    @abstractmethod
    async def send_with_tools(
        self,
        messages: List[Message],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ProviderResponse:
        """Request a completion that may contain tool calls."""

    async def send(self, messages: List[Message]) -> str:
        """Plain text completion."""
        response = await self.send_with_tools(messages, tools=None)
        return response.content

    def supports_tools(self) -> bool:
        return True

    @abstractmethod
    async def shutdown(self) -> None:
        """Release client resources."""

    def _build_response(
        self,
        content: Optional[str],
        tool_calls: List[ToolCall],
        usage: Optional[TokenUsage],
        model: Optional[str],
        finish_reason: Any,
    ) -> ProviderResponse:
        stop_reason = self._convert_finish_reason_to_stop_reason(finish_reason)
        if stop_reason is StopReason.out_of_tokens:
            logger.warning(f"{self.name} response was truncated due to max tokens")
        return ProviderResponse(
            type=ResponseType.TOOL_CALL if tool_calls else ResponseType.TEXT,
            content=(content or "").strip(),
            tool_calls=tool_calls,
            usage=usage,
            model=model,
            stop_reason=stop_reason,
        )

    def _convert_finish_reason_to_stop_reason(self, finish_reason: Any) -> StopReason:
        if finish_reason is None:
            return StopReason.end_of_turn

        reason_str = str(finish_reason).lower()
        if reason_str in ("stop", "eos", "end", "end_turn", "stop_sequence"):
            return StopReason.end_of_turn
        if reason_str in ("length", "max_tokens", "out_of_tokens"):
            return StopReason.out_of_tokens
        if reason_str in ("tool_calls", "function_call", "tool_use"):
            return StopReason.end_of_message

        logger.debug(f"Unknown finish_reason: {finish_reason}, defaulting to end_of_turn")
        return StopReason.end_of_turn

    def _translate_error(
        self,
        error: Exception,
        timeout_types: tuple = (),
        connection_types: tuple = (),
    ) -> Exception:
        """
        Map an SDK exception onto ProviderError / TemporaryServiceError.

        Status errors keep their status code; timeouts and connection failures
        become retryable with a message matching the retry signatures.
        """
        if isinstance(error, timeout_types):
            return TemporaryServiceError(f"{self.name} request timeout: {error}")
        if isinstance(error, connection_types):
            return TemporaryServiceError(f"Network request failed ({self.name}): {error}")

        status = getattr(error, "status_code", None)
        if isinstance(status, int):
            message = f"{self.name} API error {status}: {error}"
            if status in RETRYABLE_STATUS_CODES:
                response = getattr(error, "response", None)
                delay = parse_retry_after(getattr(response, "headers", None))
                return TemporaryServiceError(message, status, suggested_delay=delay)
            return ProviderError(message, status)
        return error
