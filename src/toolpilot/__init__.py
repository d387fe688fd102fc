"""Tool-calling coding agent engine."""

# The execution package must load before tools: tool modules import its types
from toolpilot.execution import AgentLoopController, AgentRuntime
from toolpilot.execution.types import AgentOutcome, AgentResult

__version__ = "0.1.0"

__all__ = [
    "AgentLoopController",
    "AgentRuntime",
    "AgentOutcome",
    "AgentResult",
    "__version__",
]
