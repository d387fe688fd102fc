"""Heuristic token estimation strategies.

Neither estimator tokenizes; both approximate from character counts. The
conservative variant is used for rate-limit admission and deliberately
over-estimates, the char-ratio variant is used for context-window accounting.
A real tokenizer can be plugged in by subclassing :class:`TokenEstimator`.
"""

import json
import math
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

if TYPE_CHECKING:
    from toolpilot.execution.types import Message

_SPECIAL_CHARS = re.compile(r"[{}\[\]()<>:;,.\"'`~!@#$%^&*+=|\\/?-]")
_WHITESPACE = re.compile(r"\s")


class TokenEstimator(ABC):
    """Strategy interface for estimating token counts."""

    @abstractmethod
    def estimate_text(self, text: str) -> int:
        """Estimate the number of tokens in ``text``."""

    def estimate_message(self, message: "Message") -> int:
        return self.estimate_text(message.content or "")

    def estimate_messages(
        self,
        messages: Sequence["Message"],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> int:
        total = sum(self.estimate_message(m) for m in messages)
        if tools:
            total += sum(self.estimate_text(json.dumps(t)) for t in tools)
        return total


class CharRatioTokenEstimator(TokenEstimator):
    """Fixed characters-per-token ratio plus a per-message overhead."""

    def __init__(self, chars_per_token: float = 3.5, per_message_overhead: int = 10):
        self.chars_per_token = chars_per_token
        self.per_message_overhead = per_message_overhead

    def estimate_text(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def estimate_message(self, message: "Message") -> int:
        return self.estimate_text(message.content or "") + self.per_message_overhead


class ConservativeTokenEstimator(TokenEstimator):
    """Over-estimating heuristic used before issuing a provider request.

    Code and JSON tokenize worse than prose, so text with a high share of
    special characters uses a lower chars-per-token ratio, and special and
    whitespace characters each add a fractional token on top.
    """

    PER_MESSAGE_OVERHEAD = 4
    PER_TOOL_CALL_OVERHEAD = 10
    PER_TOOL_DEFINITION_OVERHEAD = 20
    RESPONSE_BUFFER = 500

    def estimate_text(self, text: str) -> int:
        if not text:
            return 0

        special = len(_SPECIAL_CHARS.findall(text))
        whitespace = len(_WHITESPACE.findall(text))
        chars_per_token = 2.5 if special > len(text) * 0.1 else 3.5

        estimate = len(text) / chars_per_token + special * 0.5 + whitespace * 0.3
        return math.ceil(estimate)

    def estimate_message(self, message: "Message") -> int:
        tokens = self.PER_MESSAGE_OVERHEAD + self.estimate_text(message.content or "")
        for call in message.tool_calls or []:
            tokens += self.PER_TOOL_CALL_OVERHEAD
            tokens += self.estimate_text(call.name)
            tokens += self.estimate_text(call.arguments or "")
        return tokens

    def estimate_tool_definition(self, tool: Dict[str, Any]) -> int:
        """Estimate a provider tool spec (name, description and JSON schema)."""
        function = tool.get("function", tool)
        tokens = self.PER_TOOL_DEFINITION_OVERHEAD
        tokens += self.estimate_text(function.get("name", ""))
        tokens += self.estimate_text(function.get("description", ""))
        schema = (
            function.get("parameters")
            or function.get("input_schema")
            or function.get("inputSchema")
            or {}
        )
        tokens += math.ceil(len(json.dumps(schema)) / 2)
        return tokens

    def estimate_messages(
        self,
        messages: Sequence["Message"],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> int:
        total = sum(self.estimate_message(m) for m in messages)
        for tool in tools or []:
            total += self.estimate_tool_definition(tool)
        return total + self.RESPONSE_BUFFER
