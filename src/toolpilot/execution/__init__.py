"""Agent execution engine: loop controller and its collaborators."""

# isort: off
from .types import (
    AgentOutcome,
    AgentResult,
    ExecutionContext,
    Message,
    TokenUsage,
    ToolCall,
    ToolResult,
)
from .errors import AgentError, ErrorKind, classify_error

# isort: on
from .agent_loop import AgentLoopController, LoopState, RecentOperations
from .budget import BudgetStats, BudgetTracker
from .event_log import EventLog
from .gateway import ToolExecutionGateway
from .inline_calls import InlineToolCallParser
from .memory import (
    CompressionMethod,
    MemoryCompressor,
    MemoryConfig,
    ProviderSummarizer,
    Summarizer,
)
from .rate_limiter import RateLimitConfig, RateLimiter
from .runtime import AgentRuntime
from .session import Session, SessionStore

__all__ = [
    "AgentLoopController",
    "AgentRuntime",
    "LoopState",
    "RecentOperations",
    # Data types
    "AgentOutcome",
    "AgentResult",
    "ExecutionContext",
    "Message",
    "TokenUsage",
    "ToolCall",
    "ToolResult",
    # Error taxonomy
    "AgentError",
    "ErrorKind",
    "classify_error",
    # Collaborators
    "BudgetStats",
    "BudgetTracker",
    "EventLog",
    "ToolExecutionGateway",
    "InlineToolCallParser",
    "CompressionMethod",
    "MemoryCompressor",
    "MemoryConfig",
    "ProviderSummarizer",
    "Summarizer",
    "RateLimitConfig",
    "RateLimiter",
    "Session",
    "SessionStore",
]
