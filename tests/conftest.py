"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

# Add src directory to Python path for tests
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from toolpilot.ai_providers.base import (  # noqa: E402
    BaseProvider,
    ProviderResponse,
    ResponseType,
)
from toolpilot.config.settings import Settings  # noqa: E402
from toolpilot.execution.runtime import AgentRuntime  # noqa: E402
from toolpilot.execution.types import Message, TokenUsage, ToolCall  # noqa: E402


class StubProvider(BaseProvider):
    """Scripted provider: returns (or raises) queued items in order.

    When the script runs out the last item is repeated.
    """

    name = "stub"

    def __init__(self, script: List[Any], tools: bool = True, model_id: str = "stub-model"):
        super().__init__({"model_id": model_id})
        self.script = list(script)
        self.tools = tools
        self.requests: List[List[Message]] = []
        self.tool_specs: List[Optional[List[Dict[str, Any]]]] = []
        self.shutdown_called = False

    def _next(self):
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def initialize(self) -> None:
        pass

    async def send_with_tools(self, messages, tools=None, temperature=None, max_tokens=None):
        self.requests.append(list(messages))
        self.tool_specs.append(tools)
        return self._next()

    async def send(self, messages) -> str:
        self.requests.append(list(messages))
        item = self._next()
        return item.content if isinstance(item, ProviderResponse) else item

    def supports_tools(self) -> bool:
        return self.tools

    async def shutdown(self) -> None:
        self.shutdown_called = True


def text_response(content: str, prompt: int = 10, completion: int = 5) -> ProviderResponse:
    return ProviderResponse(
        type=ResponseType.TEXT,
        content=content,
        usage=TokenUsage(prompt, completion, prompt + completion),
    )


def tool_response(
    name: str,
    arguments: str = "{}",
    call_id: str = "call_1",
    prompt: int = 20,
    completion: int = 8,
) -> ProviderResponse:
    return ProviderResponse(
        type=ResponseType.TOOL_CALL,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)],
        usage=TokenUsage(prompt, completion, prompt + completion),
    )


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Setup test environment variables."""
    test_env = {
        "LOG_LEVEL": "DEBUG",
        "JSON_LOGS": "false",
        "AI_PROVIDER": "groq",
        "TOOLPILOT_TRACE": "false",
        "TOOLPILOT_HEADLESS": "false",
        "CI": "false",
    }

    for key, value in test_env.items():
        monkeypatch.setenv(key, value)


@pytest.fixture
def fake_sleep():
    """Replacement for asyncio.sleep that returns immediately."""
    return AsyncMock()


@pytest.fixture
def make_runtime(tmp_path, fake_sleep):
    """Factory building an AgentRuntime around a StubProvider in tmp_path."""

    def _make(script, tools: bool = True, **kwargs) -> AgentRuntime:
        provider = StubProvider(script, tools=tools)
        settings = kwargs.pop("settings", None) or Settings(WORKING_DIRECTORY=str(tmp_path))
        return AgentRuntime(
            provider,
            settings=settings,
            working_directory=str(tmp_path),
            sleep=fake_sleep,
            **kwargs,
        )

    return _make
