"""OpenAI chat-completions provider adapter."""

import os
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from toolpilot.execution.types import Message, TokenUsage, ToolCall
from toolpilot.utils.logger import get_logger
from toolpilot.utils.tool_converter import convert_tool_specs_to_openai

from .base import BaseProvider, ProviderResponse

logger = get_logger(__name__)


def to_openai_messages(messages: List[Message]) -> List[Dict[str, Any]]:
    """Convert engine messages to the chat-completions wire shape."""
    converted: List[Dict[str, Any]] = []
    for msg in messages:
        if msg.role == "tool":
            converted.append(
                {
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content,
                }
            )
            continue

        entry: Dict[str, Any] = {"role": msg.role, "content": msg.content}
        if msg.role == "assistant" and msg.tool_calls:
            entry["content"] = msg.content or None
            entry["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in msg.tool_calls
            ]
        converted.append(entry)
    return converted


class OpenAIProvider(BaseProvider):
    """OpenAI provider adapter."""

    name = "openai"
    api_key_env = "OPENAI_API_KEY"
    default_base_url: Optional[str] = None

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.client: Optional[AsyncOpenAI] = None

    async def initialize(self) -> None:
        api_key = self.config.get("api_key") or os.getenv(self.api_key_env)
        if not api_key:
            raise ValueError(f"{self.name} API key not provided")

        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=self.config.get("base_url") or self.default_base_url,
            timeout=self.timeout,
            # Retries are handled by the engine's retry manager
            max_retries=0,
        )
        logger.info(f"Initialized {self.name} provider with model: {self.model_id}")

    async def send_with_tools(
        self,
        messages: List[Message],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ProviderResponse:
        if not self.client:
            raise RuntimeError("Provider not initialized")

        request_params: Dict[str, Any] = {
            "model": self.model_id,
            "messages": to_openai_messages(messages),
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.max_tokens,
        }
        if tools and self.supports_tools():
            request_params["tools"] = convert_tool_specs_to_openai(tools)
            request_params["tool_choice"] = "auto"

        try:
            response = await self.client.chat.completions.create(**request_params)
        except (openai.APIStatusError, openai.APITimeoutError, openai.APIConnectionError) as e:
            logger.error(f"{self.name} API call failed: {e}")
            raise self._translate_error(
                e,
                timeout_types=(openai.APITimeoutError,),
                connection_types=(openai.APIConnectionError,),
            ) from e

        choice = response.choices[0]
        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=tc.function.arguments or "{}",
            )
            for tc in (choice.message.tool_calls or [])
        ]
        return self._build_response(
            choice.message.content,
            tool_calls,
            self._extract_usage(response),
            response.model,
            getattr(choice, "finish_reason", None),
        )

    def _extract_usage(self, response) -> Optional[TokenUsage]:
        usage = getattr(response, "usage", None)
        if not usage:
            return None
        return TokenUsage(
            prompt_tokens=usage.prompt_tokens or 0,
            completion_tokens=usage.completion_tokens or 0,
            total_tokens=usage.total_tokens or 0,
        )

    async def shutdown(self) -> None:
        if self.client is not None:
            await self.client.close()
        self.client = None
        logger.info(f"{self.name} provider shutdown completed")
