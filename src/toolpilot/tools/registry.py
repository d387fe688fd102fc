"""Tool registry for managing and executing tools.

The registry validates arguments against each tool's required parameters,
enforces its safety policy for the current execution context, and applies
its time limit. Exceptions raised by the tool itself propagate to the caller
(the execution gateway normalizes them).
"""

import asyncio
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from toolpilot.execution.types import ToolResult
from toolpilot.utils.logger import get_logger

from .decorator import Tool, tool

if TYPE_CHECKING:
    from toolpilot.execution.types import ExecutionContext

logger = get_logger(__name__)


class ToolRegistry:
    """Registry for managing agent tools."""

    def __init__(self):
        self._tools: Dict[str, Tool] = {}

    def register(self, tool_or_func: Union[Tool, Callable], **kwargs) -> Tool:
        """Register a Tool instance, or wrap a plain callable with ``tool(**kwargs)``."""
        t = tool_or_func if isinstance(tool_or_func, Tool) else tool(tool_or_func, **kwargs)

        if t.name in self._tools:
            logger.warning(f"Overwriting existing tool: {t.name}")

        self._tools[t.name] = t
        logger.debug(f"Registered tool: {t.name}")
        return t

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            logger.debug(f"Unregistered tool: {name}")
            return True
        return False

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def get_tools(self) -> List[Tool]:
        return [self._tools[name] for name in self.list()]

    def list(self) -> List[str]:
        """Sorted names of registered tools."""
        return sorted(self._tools.keys())

    def get_specs(self, names: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """Tool specs sorted by name, optionally restricted to ``names``."""
        selected = [
            t for t in self._tools.values() if names is None or t.name in names
        ]
        return [t.to_spec() for t in sorted(selected, key=lambda t: t.name)]

    def check_policy(
        self, tool_instance: Tool, context: "ExecutionContext"
    ) -> Optional[str]:
        """Return a refusal reason if ``context`` forbids running the tool."""
        policy = tool_instance.policy
        if context.ci and not policy.allowed_in_ci:
            return f"Tool '{tool_instance.name}' is not allowed in CI environments"
        if policy.requires_approval and context.headless and not context.auto_approve:
            return (
                f"Tool '{tool_instance.name}' requires approval, which is unavailable "
                "in headless mode without auto-approve"
            )
        return None

    async def execute(
        self, name: str, args: Dict[str, Any], context: "ExecutionContext"
    ) -> ToolResult:
        """
        Execute a tool by name.

        Args:
            name: Registered tool name
            args: Parsed arguments
            context: Execution context of the current run

        Returns:
            ToolResult; validation and policy failures are returned as failed
            results, tool exceptions propagate
        """
        tool_instance = self._tools.get(name)
        if tool_instance is None:
            return ToolResult.failure(
                f"Unknown tool: {name}. Available tools: {', '.join(self.list())}",
                tool=name,
                error_type="UnknownTool",
            )

        missing = [p for p in tool_instance.required_params if p not in args]
        if missing:
            return ToolResult.failure(
                f"Missing required parameters for {name}: {', '.join(missing)}",
                tool=name,
                error_type="InvalidArguments",
            )

        refusal = self.check_policy(tool_instance, context)
        if refusal:
            logger.warning(refusal)
            return ToolResult.failure(refusal, tool=name, error_type="PolicyViolation")

        logger.info(f"Executing tool: {name}")
        if context.verbose:
            logger.info(f"Arguments: {args}")

        start = time.time()
        invocation = tool_instance.ainvoke(args, context)
        limit = tool_instance.policy.max_execution_time
        if limit:
            result = await asyncio.wait_for(invocation, timeout=limit)
        else:
            result = await invocation
        duration = time.time() - start

        if isinstance(result, ToolResult):
            result.metadata.setdefault("tool", name)
            result.metadata.setdefault("duration", round(duration, 3))
            return result
        return ToolResult.ok(result, tool=name, duration=round(duration, 3))

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __repr__(self) -> str:
        return f"ToolRegistry(tools={list(self._tools.keys())})"
