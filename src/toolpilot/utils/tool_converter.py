"""Tool format conversion utilities for AI providers.

Tool specs produced by the registry have the shape::

    {
        "name": "tool_name",
        "description": "Tool description",
        "inputSchema": {"type": "object", "properties": {...}, "required": [...]}
    }

Providers expect slightly different envelopes around the same JSON Schema.
"""

from typing import Any, Dict, List

from toolpilot.utils.logger import get_logger

logger = get_logger(__name__)

_EMPTY_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}


def convert_tool_specs_to_openai(
    tool_specs: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Convert tool specs to OpenAI function calling format.

    OpenAI format:
    {
        "type": "function",
        "function": {"name": ..., "description": ..., "parameters": {...}}
    }

    Args:
        tool_specs: Registry tool specs

    Returns:
        List of OpenAI-compatible tool definitions
    """
    openai_tools = []

    for spec in tool_specs:
        tool_name = spec.get("name")
        if not tool_name:
            logger.warning(f"Skipping tool with no name: {spec}")
            continue

        openai_tools.append(
            {
                "type": "function",
                "function": {
                    "name": tool_name,
                    "description": spec.get("description", ""),
                    "parameters": spec.get("inputSchema") or dict(_EMPTY_SCHEMA),
                },
            }
        )

    logger.debug(f"Converted {len(openai_tools)}/{len(tool_specs)} tools to OpenAI format")
    return openai_tools


def convert_tool_specs_to_claude(
    tool_specs: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Convert tool specs to Claude tool format.

    Claude expects ``{"name", "description", "input_schema"}``.
    """
    claude_tools = []

    for spec in tool_specs:
        tool_name = spec.get("name")
        if not tool_name:
            logger.warning(f"Skipping tool with no name: {spec}")
            continue

        claude_tools.append(
            {
                "name": tool_name,
                "description": spec.get("description", ""),
                "input_schema": spec.get("inputSchema") or dict(_EMPTY_SCHEMA),
            }
        )

    logger.debug(f"Converted {len(claude_tools)}/{len(tool_specs)} tools to Claude format")
    return claude_tools
