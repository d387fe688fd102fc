"""Tool decorator for defining agent tools.

Provides a @tool decorator that derives a JSON-Schema parameter spec from a
function signature and Google-style docstring, and attaches a safety policy.
"""

import inspect
import re
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Type, get_type_hints

# Parameter injected with the ExecutionContext, never exposed to the model
CONTEXT_PARAM = "context"

TYPE_MAP: Dict[Type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}

_SECTION_END = ("returns:", "return:", "yields:", "raises:", "examples:")


@dataclass(frozen=True)
class SafetyPolicy:
    """Execution constraints declared by a tool.

    Attributes:
        requires_approval: Tool mutates state and needs user approval
        allowed_in_ci: Tool may run in CI environments
        max_execution_time: Wall-clock limit in seconds (None = unlimited)
    """

    requires_approval: bool = False
    allowed_in_ci: bool = True
    max_execution_time: Optional[float] = 30.0


def _get_json_type(python_type: Type) -> str:
    # Optional[X] / Union[X, None] map to the first non-None member
    origin = getattr(python_type, "__origin__", None)
    if origin is not None:
        if origin in (list, List):
            return "array"
        if origin in (dict, Dict):
            return "object"
        for arg in getattr(python_type, "__args__", ()):
            if arg is not type(None):
                return _get_json_type(arg)
    return TYPE_MAP.get(python_type, "string")


def _parse_docstring(docstring: str) -> Dict[str, Any]:
    """Split a Google-style docstring into a description and per-arg descriptions."""
    description_lines: List[str] = []
    arg_descriptions: Dict[str, str] = {}
    section = "description"
    current_arg: Optional[str] = None

    for line in (docstring or "").strip().splitlines():
        stripped = line.strip()
        lowered = stripped.lower()

        if lowered in ("args:", "arguments:", "parameters:"):
            section = "args"
            continue
        if lowered in _SECTION_END:
            section = "other"
            continue

        if section == "description":
            description_lines.append(stripped)
        elif section == "args":
            match = re.match(r"^(\w+)\s*(?:\([^)]*\))?\s*:\s*(.*)$", stripped)
            if match:
                current_arg = match.group(1)
                arg_descriptions[current_arg] = match.group(2)
            elif current_arg and stripped:
                arg_descriptions[current_arg] += " " + stripped

    description = re.sub(r"\s+", " ", " ".join(description_lines)).strip()
    return {
        "description": description,
        "args": {k: v.strip() for k, v in arg_descriptions.items() if v.strip()},
    }


def _generate_input_schema(
    func: Callable, arg_descriptions: Dict[str, str]
) -> Dict[str, Any]:
    sig = inspect.signature(func)
    try:
        hints = get_type_hints(func)
    except (NameError, TypeError):
        hints = {}

    properties: Dict[str, Any] = {}
    required: List[str] = []

    for param_name, param in sig.parameters.items():
        if param_name in ("self", "cls", CONTEXT_PARAM) or param.kind in (
            inspect.Parameter.VAR_KEYWORD,
            inspect.Parameter.VAR_POSITIONAL,
        ):
            continue

        prop: Dict[str, Any] = {"type": _get_json_type(hints.get(param_name, str))}
        if param_name in arg_descriptions:
            prop["description"] = arg_descriptions[param_name]
        properties[param_name] = prop

        if param.default is inspect.Parameter.empty:
            required.append(param_name)

    return {"type": "object", "properties": properties, "required": required}


class Tool:
    """A callable exposed to the model, with its schema and safety policy."""

    def __init__(
        self,
        func: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
        policy: Optional[SafetyPolicy] = None,
    ):
        self.func = func
        self.name = name or func.__name__
        parsed = _parse_docstring(func.__doc__ or "")
        self.description = description or parsed["description"] or f"Execute {self.name}"
        self.input_schema = _generate_input_schema(func, parsed["args"])
        self.policy = policy or SafetyPolicy()
        self.accepts_context = CONTEXT_PARAM in inspect.signature(func).parameters
        wraps(func)(self)

    @property
    def required_params(self) -> List[str]:
        return list(self.input_schema.get("required", []))

    def __call__(self, *args, **kwargs) -> Any:
        return self.func(*args, **kwargs)

    async def ainvoke(self, arguments: Dict[str, Any], context: Any = None) -> Any:
        """Invoke with dict arguments, injecting ``context`` when the function takes it."""
        kwargs = dict(arguments)
        if self.accepts_context:
            kwargs[CONTEXT_PARAM] = context
        result = self.func(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def to_spec(self) -> Dict[str, Any]:
        """Provider-neutral tool spec (name, description, inputSchema)."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }

    def __repr__(self) -> str:
        return f"Tool(name={self.name!r}, description={self.description[:50]!r}...)"


def tool(
    func: Optional[Callable] = None,
    *,
    name: Optional[str] = None,
    description: Optional[str] = None,
    requires_approval: bool = False,
    allowed_in_ci: bool = True,
    max_execution_time: Optional[float] = 30.0,
) -> Any:
    """Decorator to create a tool from a function.

    Can be used with or without arguments:

        @tool
        def list_files(pattern: str) -> str:
            '''List files matching a glob pattern.'''

        @tool(requires_approval=True, allowed_in_ci=False)
        def write_file(file_path: str, content: str, context=None) -> str:
            ...

    Returns:
        Tool instance wrapping the function
    """
    policy = SafetyPolicy(
        requires_approval=requires_approval,
        allowed_in_ci=allowed_in_ci,
        max_execution_time=max_execution_time,
    )

    def decorator(f: Callable) -> Tool:
        return Tool(f, name=name, description=description, policy=policy)

    if func is not None:
        return decorator(func)
    return decorator
