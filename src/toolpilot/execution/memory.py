"""Conversation memory compression.

Messages older than the most recent K are classified as critical, important
or compressible, and one of three strategies shortens the list:

- truncate: keep critical and recent messages only
- selective: additionally keep as many important, then compressible,
  messages as fit the target reduction
- summarize: replace compressible messages with one synthetic summary
  message and keep a short tail of important messages

The surviving messages always keep their original relative order, and a
tool response is never separated from the assistant message that requested it.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Set,
)

from toolpilot.execution.types import Message
from toolpilot.utils.logger import get_logger
from toolpilot.utils.token_utils import CharRatioTokenEstimator, TokenEstimator

if TYPE_CHECKING:
    from toolpilot.ai_providers.base import BaseProvider
    from toolpilot.execution.session import SessionStore

logger = get_logger(__name__)

SUMMARY_MARKER = "[CONVERSATION SUMMARY"
COMPRESSED_MARKER = "[COMPRESSED CONTEXT"
TASK_MARKER = "**Current Task:**"

CRITICAL_MARKERS = (SUMMARY_MARKER, COMPRESSED_MARKER, TASK_MARKER)
ERROR_MARKERS = ("error:", "failed:")
IMPORTANT_MARKERS = ("```", "tool_calls", "write_file", "read_file", "edit_file")


class CompressionMethod(Enum):
    """Available compression strategies."""

    TRUNCATE = "truncate"
    SELECTIVE = "selective"
    SUMMARIZE = "summarize"


FALLBACK_METHOD = "fallback_truncation"


class CompressionUrgency(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class MemoryConfig:
    """Configuration for memory compression."""

    max_context_tokens: int = 180000
    auto_compact_threshold: float = 0.75  # fraction of max_context_tokens
    min_messages_before_compact: int = 8
    preserve_recent_messages: int = 4
    target_reduction: float = 0.6  # fraction of messages to drop (selective)
    method: CompressionMethod = CompressionMethod.SUMMARIZE
    important_length_threshold: int = 500
    important_tail: int = 3  # important messages kept next to a summary


@dataclass
class TokenEstimate:
    message_tokens: int
    system_tokens: int
    total: int
    percentage_of_limit: float


@dataclass
class CompressionDecision:
    needed: bool
    urgency: CompressionUrgency
    reason: str


@dataclass
class MessageClassification:
    """Indices into the classified message list, each in ascending order."""

    critical: List[int] = field(default_factory=list)
    important: List[int] = field(default_factory=list)
    compressible: List[int] = field(default_factory=list)
    recent: List[int] = field(default_factory=list)


@dataclass
class CompressionRecord:
    timestamp: str
    method: str
    original_count: int
    new_count: int
    original_tokens: int
    new_tokens: int

    def to_dict(self) -> Dict[str, Any]:
        """Session metadata representation (``lastCompression``)."""
        return {
            "timestamp": self.timestamp,
            "method": self.method,
            "originalCount": self.original_count,
            "newCount": self.new_count,
            "originalTokens": self.original_tokens,
            "newTokens": self.new_tokens,
        }


@dataclass
class CompressionResult:
    messages: List[Message]
    record: CompressionRecord

    @property
    def fallback(self) -> bool:
        return self.record.method == FALLBACK_METHOD

    @property
    def tokens_reduced(self) -> int:
        return self.record.original_tokens - self.record.new_tokens


@dataclass
class MemorySnapshot:
    message_count: int
    token_estimate: TokenEstimate
    last_compression: Optional[Dict[str, Any]] = None


class Summarizer(ABC):
    """Capability interface for producing a conversation summary."""

    @abstractmethod
    async def summarize(
        self, messages: Sequence[Message], context: Optional[str] = None
    ) -> str:
        """Return a summary of ``messages``; raise on failure."""


class ProviderSummarizer(Summarizer):
    """
    Summarizer backed by a provider's plain ``send`` call.

    ``send`` replaces the direct provider call; the runtime passes one that
    goes through the rate limiter and retry manager.
    """

    SYSTEM_PROMPT = (
        "You create concise, technical summaries of development conversations "
        "that preserve important context."
    )

    def __init__(
        self,
        provider: "BaseProvider",
        send: Optional[Callable[[List[Message]], Awaitable[str]]] = None,
    ):
        self.provider = provider
        self._send = send or provider.send

    def build_prompt(
        self, messages: Sequence[Message], context: Optional[str] = None
    ) -> str:
        conversation_text = "\n\n".join(f"{m.role}: {m.content}" for m in messages)
        context_block = f"Session Context:\n{context}\n\n" if context else ""
        return (
            "Create a concise summary of this development session, focusing on:\n"
            "- Key tasks completed and their outcomes\n"
            "- Important decisions and changes made\n"
            "- Files and components that were modified\n"
            "- Current progress and any pending work\n"
            "- Technical context that should be preserved\n\n"
            f"{context_block}Conversation:\n{conversation_text}\n\nSummary:"
        )

    async def summarize(
        self, messages: Sequence[Message], context: Optional[str] = None
    ) -> str:
        summary = await self._send(
            [
                Message(role="system", content=self.SYSTEM_PROMPT),
                Message(role="user", content=self.build_prompt(messages, context)),
            ]
        )
        if not summary or not summary.strip():
            raise ValueError("Provider returned an empty summary")
        return summary.strip()


class MemoryCompressor:
    """Token-aware conversation compressor."""

    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        summarizer: Optional[Summarizer] = None,
        estimator: Optional[TokenEstimator] = None,
    ):
        self.config = config or MemoryConfig()
        self.summarizer = summarizer
        self.estimator = estimator or CharRatioTokenEstimator()

    def estimate_tokens(self, messages: Sequence[Message]) -> TokenEstimate:
        message_tokens = 0
        system_tokens = 0
        for message in messages:
            tokens = self.estimator.estimate_message(message)
            if message.role == "system":
                system_tokens += tokens
            else:
                message_tokens += tokens

        total = message_tokens + system_tokens
        return TokenEstimate(
            message_tokens=message_tokens,
            system_tokens=system_tokens,
            total=total,
            percentage_of_limit=total / self.config.max_context_tokens * 100,
        )

    def should_compress(self, messages: Sequence[Message]) -> CompressionDecision:
        tokens = self.estimate_tokens(messages)
        reason = f"Context at {tokens.percentage_of_limit:.1f}% capacity"

        if len(messages) < self.config.min_messages_before_compact:
            return CompressionDecision(
                False, CompressionUrgency.LOW, "Insufficient messages for compression"
            )
        if tokens.percentage_of_limit > 90:
            return CompressionDecision(True, CompressionUrgency.HIGH, reason)
        if tokens.percentage_of_limit > self.config.auto_compact_threshold * 100:
            return CompressionDecision(True, CompressionUrgency.MEDIUM, reason)
        return CompressionDecision(False, CompressionUrgency.LOW, reason)

    def is_critical(self, message: Message) -> bool:
        if message.role == "system":
            return True
        content = message.content or ""
        if any(marker in content for marker in CRITICAL_MARKERS):
            return True
        lowered = content.lower()
        return any(marker in lowered for marker in ERROR_MARKERS)

    def is_important(self, message: Message) -> bool:
        if message.tool_calls or message.role == "tool":
            return True
        content = message.content or ""
        if len(content) > self.config.important_length_threshold:
            return True
        return any(marker in content for marker in IMPORTANT_MARKERS)

    def classify(self, messages: Sequence[Message]) -> MessageClassification:
        keep_recent = max(0, self.config.preserve_recent_messages)
        split = max(0, len(messages) - keep_recent)
        result = MessageClassification(recent=list(range(split, len(messages))))

        for index in range(split):
            message = messages[index]
            if self.is_critical(message):
                result.critical.append(index)
            elif self.is_important(message):
                result.important.append(index)
            else:
                result.compressible.append(index)
        return result

    async def compress(
        self,
        messages: Sequence[Message],
        context: Optional[str] = None,
        method: Optional[CompressionMethod] = None,
    ) -> CompressionResult:
        """
        Compress ``messages`` with the configured (or given) strategy.

        Args:
            messages: Conversation to compress (not modified)
            context: Session context handed to the summarizer
            method: Strategy override

        Returns:
            CompressionResult with the new message list and its record
        """
        method = method or self.config.method
        messages = list(messages)
        original_tokens = self.estimate_tokens(messages).total
        classification = self.classify(messages)

        if method is CompressionMethod.TRUNCATE:
            new_messages = self._truncate(messages, classification)
            method_name = method.value
        elif method is CompressionMethod.SELECTIVE:
            new_messages = self._selective(messages, classification)
            method_name = method.value
        else:
            new_messages = await self._summarize(messages, classification, context)
            method_name = method.value
            if new_messages is None:
                new_messages = self._truncate(messages, classification)
                method_name = FALLBACK_METHOD

        new_tokens = self.estimate_tokens(new_messages).total
        if new_tokens > original_tokens:
            logger.warning(
                f"{method_name} compression grew context ({original_tokens} -> {new_tokens} tokens), truncating instead"
            )
            new_messages = self._truncate(messages, classification)
            new_tokens = self.estimate_tokens(new_messages).total
            method_name = FALLBACK_METHOD

        record = CompressionRecord(
            timestamp=datetime.now().isoformat(),
            method=method_name,
            original_count=len(messages),
            new_count=len(new_messages),
            original_tokens=original_tokens,
            new_tokens=new_tokens,
        )
        logger.info(
            f"Compressed conversation with {method_name}: {record.original_count} -> "
            f"{record.new_count} messages, {original_tokens} -> {new_tokens} tokens"
        )
        return CompressionResult(messages=new_messages, record=record)

    def _truncate(
        self, messages: List[Message], classification: MessageClassification
    ) -> List[Message]:
        keep = set(classification.critical) | set(classification.recent)
        return self._rebuild(messages, keep)

    def _selective(
        self, messages: List[Message], classification: MessageClassification
    ) -> List[Message]:
        keep = set(classification.critical) | set(classification.recent)
        target_count = int(len(messages) * (1 - self.config.target_reduction))
        remaining = max(0, target_count - len(keep))

        important_to_keep = min(len(classification.important), remaining)
        if important_to_keep:
            keep.update(classification.important[-important_to_keep:])
        remaining -= important_to_keep

        compressible_to_keep = min(len(classification.compressible), remaining)
        if compressible_to_keep:
            keep.update(classification.compressible[-compressible_to_keep:])

        return self._rebuild(messages, keep)

    async def _summarize(
        self,
        messages: List[Message],
        classification: MessageClassification,
        context: Optional[str],
    ) -> Optional[List[Message]]:
        """Summary-based compression; None means the caller must fall back."""
        keep = set(classification.critical) | set(classification.recent)
        tail = self.config.important_tail
        if tail > 0 and classification.important:
            keep.update(classification.important[-tail:])
        keep = self._close_tool_pairs(messages, keep)

        summarized = [i for i in classification.compressible if i not in keep]
        if not summarized:
            return self._rebuild(messages, keep)

        if self.summarizer is None:
            logger.warning("No summarizer configured, falling back to truncation")
            return None

        try:
            summary = await self.summarizer.summarize(
                [messages[i] for i in summarized], context
            )
        except Exception as e:
            logger.warning(f"Conversation summarization failed: {e}")
            return None

        summary_message = Message(
            role="system",
            content=f"{COMPRESSED_MARKER} - {len(summarized)} messages]\n{summary}",
        )
        return self._rebuild(messages, keep, summary_at=summarized[0], summary=summary_message)

    def _close_tool_pairs(self, messages: List[Message], keep: Set[int]) -> Set[int]:
        """Extend ``keep`` so no tool response is separated from its request."""
        request_index: Dict[str, int] = {}
        responses: Dict[int, List[int]] = {}
        for index, message in enumerate(messages):
            for call in message.tool_calls or []:
                request_index[call.id] = index
            if message.role == "tool" and message.tool_call_id in request_index:
                parent = request_index[message.tool_call_id]
                responses.setdefault(parent, []).append(index)

        keep = set(keep)
        changed = True
        while changed:
            changed = False
            for index in list(keep):
                message = messages[index]
                if message.role == "tool" and message.tool_call_id in request_index:
                    parent = request_index[message.tool_call_id]
                    if parent not in keep:
                        keep.add(parent)
                        changed = True
                for child in responses.get(index, []):
                    if child not in keep:
                        keep.add(child)
                        changed = True
        return keep

    def _rebuild(
        self,
        messages: List[Message],
        keep: Set[int],
        summary_at: Optional[int] = None,
        summary: Optional[Message] = None,
    ) -> List[Message]:
        keep = self._close_tool_pairs(messages, keep)
        result: List[Message] = []
        for index, message in enumerate(messages):
            if summary is not None and index == summary_at:
                result.append(summary)
            if index in keep:
                result.append(message)
        return result

    async def compress_session(
        self, store: "SessionStore", force: bool = False
    ) -> Optional[CompressionResult]:
        """
        Compress the current session's stored history when needed (or forced),
        persisting the result and its ``lastCompression`` record.
        """
        session = store.current
        decision = self.should_compress(session.messages)
        if not force and not decision.needed:
            return None

        start = time.time()
        result = await self.compress(session.messages, context=store.get_summary())
        store.replace_messages(result.messages)
        store.update_metadata("lastCompression", result.record.to_dict())
        logger.info(
            f"Session {session.session_id} compacted ({decision.reason}) in {time.time() - start:.2f}s"
        )
        return result

    def get_snapshot(
        self, messages: Sequence[Message], metadata: Optional[Dict[str, Any]] = None
    ) -> MemorySnapshot:
        return MemorySnapshot(
            message_count=len(messages),
            token_estimate=self.estimate_tokens(messages),
            last_compression=(metadata or {}).get("lastCompression"),
        )
