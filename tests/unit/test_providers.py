"""Unit tests for provider adapters and the provider factory."""

import json
import os
from unittest.mock import AsyncMock, Mock, patch

import anthropic
import httpx
import openai
import pytest

from toolpilot.ai_providers import (
    ClaudeProvider,
    GroqProvider,
    OpenAIProvider,
    ProviderError,
    ResponseType,
    StopReason,
    TemporaryServiceError,
    create_provider,
    get_default_model,
    get_provider_config,
)
from toolpilot.ai_providers.claude import to_claude_messages
from toolpilot.ai_providers.groq import GROQ_BASE_URL
from toolpilot.ai_providers.openai import to_openai_messages
from toolpilot.config.settings import Settings
from toolpilot.execution.types import Message, ToolCall
from toolpilot.utils.retry import RetryConfig, is_retryable_error

SPECS = [
    {
        "name": "read_file",
        "description": "Read a file",
        "inputSchema": {
            "type": "object",
            "properties": {"file_path": {"type": "string"}},
            "required": ["file_path"],
        },
    }
]

REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat")


def conversation():
    return [
        Message(role="system", content="Be brief."),
        Message(role="user", content="Read a.py and b.py"),
        Message(
            role="assistant",
            content="",
            tool_calls=[
                ToolCall(id="c1", name="read_file", arguments='{"file_path": "a.py"}'),
                ToolCall(id="c2", name="read_file", arguments="not json"),
            ],
        ),
        Message(role="tool", content="A", tool_call_id="c1", name="read_file"),
        Message(role="tool", content="B", tool_call_id="c2", name="read_file"),
    ]


def openai_completion(content="Done.", tool_calls=None, finish_reason="stop"):
    choice = Mock()
    choice.message.content = content
    choice.message.tool_calls = tool_calls
    choice.finish_reason = finish_reason
    response = Mock()
    response.choices = [choice]
    response.usage = Mock(prompt_tokens=12, completion_tokens=3, total_tokens=15)
    response.model = "gpt-4o"
    return response


def openai_tool_call(call_id, name, arguments):
    tc = Mock()
    tc.id = call_id
    tc.function.name = name
    tc.function.arguments = arguments
    return tc


class TestOpenAIMessages:
    """Test conversion to the chat-completions wire format."""

    def test_conversion(self):
        converted = to_openai_messages(conversation())

        assert converted[0] == {"role": "system", "content": "Be brief."}
        assert converted[2]["content"] is None
        assert converted[2]["tool_calls"][0] == {
            "id": "c1",
            "type": "function",
            "function": {"name": "read_file", "arguments": '{"file_path": "a.py"}'},
        }
        assert converted[3] == {"role": "tool", "tool_call_id": "c1", "content": "A"}


class TestOpenAIProvider:
    """Test the OpenAI adapter against a mocked SDK client."""

    @pytest.fixture
    def provider(self):
        provider = OpenAIProvider({"model_id": "gpt-4o", "api_key": "sk-test", "temperature": 0.2})
        provider.client = Mock()
        provider.client.chat.completions.create = AsyncMock(return_value=openai_completion())
        provider.client.close = AsyncMock()
        return provider

    @pytest.mark.asyncio
    async def test_initialize(self):
        with patch("toolpilot.ai_providers.openai.AsyncOpenAI") as client_cls:
            provider = OpenAIProvider({"model_id": "gpt-4o", "api_key": "sk-test", "timeout": 12})
            await provider.initialize()

        client_cls.assert_called_once_with(
            api_key="sk-test", base_url=None, timeout=12.0, max_retries=0
        )

    @pytest.mark.asyncio
    async def test_initialize_without_key(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValueError):
                await OpenAIProvider({"model_id": "gpt-4o"}).initialize()

    @pytest.mark.asyncio
    async def test_not_initialized(self):
        with pytest.raises(RuntimeError):
            await OpenAIProvider({"model_id": "gpt-4o"}).send_with_tools([])

    @pytest.mark.asyncio
    async def test_text_response(self, provider):
        response = await provider.send_with_tools([Message(role="user", content="hi")])

        assert response.type is ResponseType.TEXT
        assert response.content == "Done."
        assert response.usage.total_tokens == 15
        assert response.stop_reason is StopReason.end_of_turn

        params = provider.client.chat.completions.create.call_args.kwargs
        assert params["model"] == "gpt-4o"
        assert params["temperature"] == 0.2
        assert "tools" not in params

    @pytest.mark.asyncio
    async def test_tool_call_response(self, provider):
        provider.client.chat.completions.create.return_value = openai_completion(
            content=None,
            tool_calls=[openai_tool_call("c1", "read_file", '{"file_path": "a.py"}')],
            finish_reason="tool_calls",
        )

        response = await provider.send_with_tools(
            [Message(role="user", content="read a.py")], tools=SPECS
        )

        assert response.is_tool_call
        assert response.tool_calls == [
            ToolCall(id="c1", name="read_file", arguments='{"file_path": "a.py"}')
        ]
        assert response.content == ""
        assert response.stop_reason is StopReason.end_of_message

        params = provider.client.chat.completions.create.call_args.kwargs
        assert params["tool_choice"] == "auto"
        assert params["tools"][0]["function"]["name"] == "read_file"

    @pytest.mark.asyncio
    async def test_truncated_response(self, provider):
        provider.client.chat.completions.create.return_value = openai_completion(
            finish_reason="length"
        )
        response = await provider.send_with_tools([Message(role="user", content="hi")])
        assert response.stop_reason is StopReason.out_of_tokens

    @pytest.mark.asyncio
    async def test_send_returns_text(self, provider):
        assert await provider.send([Message(role="user", content="hi")]) == "Done."

    @pytest.mark.asyncio
    async def test_rate_limit_is_temporary(self, provider):
        response = httpx.Response(429, request=REQUEST, headers={"retry-after": "3"})
        provider.client.chat.completions.create.side_effect = openai.RateLimitError(
            "rate limited", response=response, body=None
        )

        with pytest.raises(TemporaryServiceError) as exc_info:
            await provider.send_with_tools([Message(role="user", content="hi")])

        assert exc_info.value.status_code == 429
        assert exc_info.value.suggested_delay == 3.0

    @pytest.mark.asyncio
    async def test_bad_request_is_fatal(self, provider):
        response = httpx.Response(400, request=REQUEST)
        provider.client.chat.completions.create.side_effect = openai.BadRequestError(
            "bad request", response=response, body=None
        )

        with pytest.raises(ProviderError) as exc_info:
            await provider.send_with_tools([Message(role="user", content="hi")])

        assert not isinstance(exc_info.value, TemporaryServiceError)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_timeout_and_connection_errors_are_retryable(self, provider):
        for error in (
            openai.APITimeoutError(request=REQUEST),
            openai.APIConnectionError(request=REQUEST),
        ):
            provider.client.chat.completions.create.side_effect = error
            with pytest.raises(TemporaryServiceError) as exc_info:
                await provider.send_with_tools([Message(role="user", content="hi")])
            assert is_retryable_error(exc_info.value, RetryConfig())

    @pytest.mark.asyncio
    async def test_shutdown(self, provider):
        client = provider.client
        await provider.shutdown()

        client.close.assert_awaited_once()
        assert provider.client is None


class TestGroqProvider:
    """Test the Groq adapter."""

    @pytest.mark.asyncio
    async def test_initialize_uses_groq_endpoint(self):
        with patch.dict(os.environ, {"GROQ_API_KEY": "gsk-test"}):
            with patch("toolpilot.ai_providers.openai.AsyncOpenAI") as client_cls:
                await GroqProvider({"model_id": "llama-3.3-70b-versatile"}).initialize()

        assert client_cls.call_args.kwargs["base_url"] == GROQ_BASE_URL
        assert client_cls.call_args.kwargs["api_key"] == "gsk-test"

    def test_supports_tools_by_model(self):
        assert GroqProvider({"model_id": "llama-3.3-70b-versatile"}).supports_tools()
        assert GroqProvider({"model_id": "openai/gpt-oss-20b"}).supports_tools()
        assert not GroqProvider({"model_id": "gemma-7b-it"}).supports_tools()

    @pytest.mark.asyncio
    async def test_tools_omitted_for_incapable_model(self):
        provider = GroqProvider({"model_id": "gemma-7b-it"})
        provider.client = Mock()
        provider.client.chat.completions.create = AsyncMock(return_value=openai_completion())

        await provider.send_with_tools([Message(role="user", content="hi")], tools=SPECS)

        assert "tools" not in provider.client.chat.completions.create.call_args.kwargs


class TestClaudeMessages:
    """Test conversion to the Messages API format."""

    def test_conversion(self):
        system, converted = to_claude_messages(
            [Message(role="system", content="Extra rules.")] + conversation()
        )

        assert system == "Extra rules.\n\nBe brief."
        assert [m["role"] for m in converted] == ["user", "assistant", "user"]

        tool_uses = converted[1]["content"]
        assert tool_uses[0] == {
            "type": "tool_use",
            "id": "c1",
            "name": "read_file",
            "input": {"file_path": "a.py"},
        }
        assert tool_uses[1]["input"] == {}

        results = converted[2]["content"]
        assert [b["tool_use_id"] for b in results] == ["c1", "c2"]
        assert all(b["type"] == "tool_result" for b in results)

    def test_assistant_text_kept_with_tool_use(self):
        _, converted = to_claude_messages(
            [
                Message(
                    role="assistant",
                    content="Let me look.",
                    tool_calls=[ToolCall(id="c1", name="list_files")],
                )
            ]
        )
        assert converted[0]["content"][0] == {"type": "text", "text": "Let me look."}

    def test_no_system(self):
        system, _ = to_claude_messages([Message(role="user", content="hi")])
        assert system is None


class TestClaudeProvider:
    """Test the Claude adapter against a mocked SDK client."""

    @pytest.fixture
    def provider(self):
        provider = ClaudeProvider({"model_id": "claude-3-5-sonnet-latest", "api_key": "ak"})
        provider.client = Mock()
        provider.client.messages.create = AsyncMock()
        provider.client.close = AsyncMock()
        return provider

    def claude_message(self, blocks, stop_reason="end_turn"):
        response = Mock()
        response.content = blocks
        response.usage = Mock(input_tokens=30, output_tokens=7)
        response.model = "claude-3-5-sonnet-latest"
        response.stop_reason = stop_reason
        return response

    @pytest.mark.asyncio
    async def test_initialize(self):
        with patch("toolpilot.ai_providers.claude.AsyncAnthropic") as client_cls:
            await ClaudeProvider({"model_id": "m", "api_key": "ak", "timeout": 5}).initialize()

        client_cls.assert_called_once_with(api_key="ak", timeout=5.0, max_retries=0)

    @pytest.mark.asyncio
    async def test_tool_use_response(self, provider):
        text = Mock(type="text", text="Reading.")
        tool_use = Mock(type="tool_use", id="tu_1", input={"file_path": "a.py"})
        tool_use.name = "read_file"
        provider.client.messages.create.return_value = self.claude_message(
            [text, tool_use], stop_reason="tool_use"
        )

        response = await provider.send_with_tools(conversation(), tools=SPECS)

        assert response.is_tool_call
        assert response.content == "Reading."
        assert response.tool_calls[0].name == "read_file"
        assert json.loads(response.tool_calls[0].arguments) == {"file_path": "a.py"}
        assert response.usage.total_tokens == 37
        assert response.stop_reason is StopReason.end_of_message

        params = provider.client.messages.create.call_args.kwargs
        assert params["system"] == "Be brief."
        assert params["tools"][0]["input_schema"]["required"] == ["file_path"]

    @pytest.mark.asyncio
    async def test_text_response(self, provider):
        provider.client.messages.create.return_value = self.claude_message(
            [Mock(type="text", text="All done.")]
        )

        response = await provider.send_with_tools([Message(role="user", content="hi")])

        assert response.type is ResponseType.TEXT
        assert response.content == "All done."
        assert "system" not in provider.client.messages.create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_overloaded_is_temporary(self, provider):
        response = httpx.Response(503, request=REQUEST)
        provider.client.messages.create.side_effect = anthropic.APIStatusError(
            "overloaded", response=response, body=None
        )

        with pytest.raises(TemporaryServiceError) as exc_info:
            await provider.send_with_tools([Message(role="user", content="hi")])

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_timeout_is_temporary(self, provider):
        provider.client.messages.create.side_effect = anthropic.APITimeoutError(request=REQUEST)

        with pytest.raises(TemporaryServiceError):
            await provider.send_with_tools([Message(role="user", content="hi")])


class TestProviderFactory:
    """Test provider creation from settings."""

    def test_create_provider(self):
        assert isinstance(create_provider("groq", {"model_id": "x"}), GroqProvider)
        assert isinstance(create_provider("OpenAI", {"model_id": "x"}), OpenAIProvider)
        assert isinstance(create_provider("anthropic", {"model_id": "x"}), ClaudeProvider)

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            create_provider("gemini", {})

    def test_default_models(self):
        assert get_default_model("groq") == "llama-3.3-70b-versatile"
        assert get_default_model("claude") == "claude-3-5-sonnet-latest"
        assert get_default_model("unknown") == "llama-3.3-70b-versatile"

    def test_provider_config_from_settings(self):
        env = {
            "AI_PROVIDER": "openai",
            "AI_MODEL": "",
            "OPENAI_API_KEY": "sk-test",
            "AI_TEMPERATURE": "0.3",
            "PROVIDER_TIMEOUT": "45",
        }
        with patch.dict(os.environ, env):
            config = get_provider_config(Settings())

        assert config == {
            "ai_provider": "openai",
            "model_id": "gpt-4o",
            "temperature": 0.3,
            "max_tokens": 4096,
            "timeout": 45.0,
            "api_key": "sk-test",
        }
