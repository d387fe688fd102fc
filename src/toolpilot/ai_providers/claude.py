"""Anthropic Claude provider adapter."""

import json
import os
from typing import Any, Dict, List, Optional, Tuple

import anthropic
from anthropic import AsyncAnthropic

from toolpilot.execution.types import Message, TokenUsage, ToolCall
from toolpilot.utils.logger import get_logger
from toolpilot.utils.tool_converter import convert_tool_specs_to_claude

from .base import BaseProvider, ProviderResponse

logger = get_logger(__name__)


def _parse_input(arguments: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(arguments or "{}")
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def to_claude_messages(
    messages: List[Message],
) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """
    Convert engine messages to the Messages API shape.

    System messages are merged into the separate ``system`` parameter and
    consecutive tool results are grouped into a single user turn.

    Returns:
        Tuple of (system prompt, messages)
    """
    system_parts: List[str] = []
    converted: List[Dict[str, Any]] = []

    for msg in messages:
        if msg.role == "system":
            if msg.content:
                system_parts.append(msg.content)
            continue

        if msg.role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id,
                "content": msg.content,
            }
            last = converted[-1] if converted else None
            if (
                last is not None
                and last["role"] == "user"
                and isinstance(last["content"], list)
                and all(b.get("type") == "tool_result" for b in last["content"])
            ):
                last["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
            continue

        if msg.role == "assistant" and msg.tool_calls:
            blocks: List[Dict[str, Any]] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for tc in msg.tool_calls:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": _parse_input(tc.arguments),
                    }
                )
            converted.append({"role": "assistant", "content": blocks})
            continue

        converted.append({"role": msg.role, "content": msg.content})

    system = "\n\n".join(system_parts) if system_parts else None
    return system, converted


class ClaudeProvider(BaseProvider):
    """Anthropic Claude provider adapter."""

    name = "claude"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.client: Optional[AsyncAnthropic] = None

    async def initialize(self) -> None:
        """Initialize Anthropic connection."""
        api_key = self.config.get("api_key") or os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError("Anthropic API key not provided")

        self.client = AsyncAnthropic(api_key=api_key, timeout=self.timeout, max_retries=0)
        logger.info(f"Initialized Claude provider with model: {self.model_id}")

    async def send_with_tools(
        self,
        messages: List[Message],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ProviderResponse:
        if not self.client:
            raise RuntimeError("Provider not initialized")

        system, claude_messages = to_claude_messages(messages)
        request_params: Dict[str, Any] = {
            "model": self.model_id,
            "messages": claude_messages,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature if temperature is None else temperature,
        }
        if system:
            request_params["system"] = system
        if tools:
            request_params["tools"] = convert_tool_specs_to_claude(tools)

        try:
            response = await self.client.messages.create(**request_params)
        except (
            anthropic.APIStatusError,
            anthropic.APITimeoutError,
            anthropic.APIConnectionError,
        ) as e:
            logger.error(f"Claude API call failed: {e}")
            raise self._translate_error(
                e,
                timeout_types=(anthropic.APITimeoutError,),
                connection_types=(anthropic.APIConnectionError,),
            ) from e

        text_parts: List[str] = []
        tool_calls: List[ToolCall] = []
        for block in response.content:
            block_type = getattr(block, "type", None)
            if block_type == "text":
                text_parts.append(block.text)
            elif block_type == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.id,
                        name=block.name,
                        arguments=json.dumps(block.input or {}),
                    )
                )

        return self._build_response(
            "".join(text_parts),
            tool_calls,
            self._extract_usage(response),
            response.model,
            getattr(response, "stop_reason", None),
        )

    def _extract_usage(self, response) -> Optional[TokenUsage]:
        usage = getattr(response, "usage", None)
        if not usage:
            return None
        prompt = usage.input_tokens or 0
        completion = usage.output_tokens or 0
        return TokenUsage(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion,
        )

    async def shutdown(self) -> None:
        """Shutdown Claude provider."""
        if self.client is not None:
            await self.client.close()
        self.client = None
        logger.info("Claude provider shutdown completed")
