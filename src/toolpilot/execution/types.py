"""Core data types shared by the execution engine."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class ToolCall:
    """A tool invocation requested by the model.

    ``arguments`` is the raw JSON string produced by the provider and is
    untrusted until parsed by the gateway.
    """

    id: str
    name: str
    arguments: str = "{}"

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCall":
        arguments = data.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return cls(id=data["id"], name=data["name"], arguments=arguments)


@dataclass
class Message:
    """A single conversation message."""

    role: str
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["toolCalls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            data["toolCallId"] = self.tool_call_id
        if self.name is not None:
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        raw_calls = data.get("toolCalls")
        return cls(
            role=data["role"],
            content=data.get("content") or "",
            tool_calls=[ToolCall.from_dict(tc) for tc in raw_calls]
            if raw_calls
            else None,
            tool_call_id=data.get("toolCallId"),
            name=data.get("name"),
        )


@dataclass
class ToolResult:
    """Normalized outcome of a tool execution."""

    success: bool
    content: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, content: Any, **metadata: Any) -> "ToolResult":
        if not isinstance(content, str):
            content = json.dumps(content, default=str)
        return cls(success=True, content=content, metadata=dict(metadata))

    @classmethod
    def failure(cls, error: str, **metadata: Any) -> "ToolResult":
        return cls(success=False, error=error, metadata=dict(metadata))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.content is not None:
            data["content"] = self.content
        if self.error is not None:
            data["error"] = self.error
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    def to_json(self) -> str:
        """Render as the content of a ``tool`` message."""
        return json.dumps(self.to_dict(), default=str)


@dataclass
class ExecutionContext:
    """Per-run state shared by every tool invocation."""

    working_directory: str
    session_id: str
    auto_approve: bool = False
    headless: bool = False
    ci: bool = False
    verbose: bool = False
    trace: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenUsage:
    """Prompt/completion/total token counters."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: "TokenUsage") -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens

    def copy(self) -> "TokenUsage":
        return TokenUsage(self.prompt_tokens, self.completion_tokens, self.total_tokens)

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


class AgentOutcome(Enum):
    """How an agent run ended."""

    COMPLETED = "completed"
    FAILED = "failed"
    MAX_ITERATIONS = "max_iterations"


@dataclass(frozen=True)
class AgentResult:
    """Terminal value of :meth:`AgentLoopController.run`."""

    outcome: AgentOutcome
    content: str
    iterations: int
    tool_call_count: int
    tokens: TokenUsage

    @property
    def success(self) -> bool:
        return self.outcome is AgentOutcome.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "content": self.content,
            "iterations": self.iterations,
            "tool_call_count": self.tool_call_count,
            "tokens": self.tokens.to_dict(),
        }
