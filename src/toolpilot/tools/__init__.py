"""Tool system for the agent.

Example usage:
    from toolpilot.tools import tool, ToolRegistry

    @tool(requires_approval=True)
    def deploy(target: str, context=None) -> str:
        '''Deploy the current branch.

        Args:
            target: Environment name
        '''
        ...

    registry = ToolRegistry()
    registry.register(deploy)
    specs = registry.get_specs()
"""

from .decorator import SafetyPolicy, Tool, tool
from .file_tools import (
    edit_file,
    list_files,
    read_file,
    register_file_tools,
    write_file,
)
from .registry import ToolRegistry

__all__ = [
    "tool",
    "Tool",
    "SafetyPolicy",
    "ToolRegistry",
    # Built-in file tools
    "list_files",
    "read_file",
    "write_file",
    "edit_file",
    "register_file_tools",
]
