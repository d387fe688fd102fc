"""Tool execution gateway.

Sits between the agent loop and the tool registry: parses (and if needed
repairs) model-provided arguments, serves repeated file reads from a short
lived cache, invalidates that cache before writes, and turns every tool
exception into a failed :class:`ToolResult`.
"""

import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

from toolpilot.execution.types import ExecutionContext, ToolCall, ToolResult
from toolpilot.tools.registry import ToolRegistry
from toolpilot.utils.logger import get_logger

logger = get_logger(__name__)

CACHEABLE_TOOLS = frozenset({"read_file"})
INVALIDATING_TOOLS = frozenset({"write_file", "edit_file", "multi_edit"})
PATH_ARGUMENTS = ("file_path", "path")


class MalformedArgumentsError(ValueError):
    """Tool arguments could not be parsed even after repair."""


def parse_arguments(raw: Union[str, Dict[str, Any], None]) -> Tuple[Dict[str, Any], bool]:
    """
    Parse tool-call arguments.

    Invalid JSON is repaired once by discarding everything after the final
    closing brace.

    Returns:
        Tuple of (arguments, repaired)

    Raises:
        MalformedArgumentsError: If the arguments are unusable
    """
    if raw is None or raw == "":
        return {}, False
    if isinstance(raw, dict):
        return raw, False

    try:
        parsed = json.loads(raw)
        repaired = False
    except json.JSONDecodeError as e:
        end = raw.rfind("}")
        if end == -1:
            raise MalformedArgumentsError(f"Invalid tool arguments: {e}") from e
        try:
            parsed = json.loads(raw[: end + 1])
        except json.JSONDecodeError as inner:
            raise MalformedArgumentsError(f"Invalid tool arguments: {inner}") from inner
        repaired = True

    if not isinstance(parsed, dict):
        raise MalformedArgumentsError(
            f"Tool arguments must be a JSON object, got {type(parsed).__name__}"
        )
    return parsed, repaired


@dataclass
class _CacheEntry:
    result: ToolResult
    created_at: float


class ToolExecutionGateway:
    """Executes tools through a registry with caching and error normalization."""

    def __init__(
        self,
        registry: ToolRegistry,
        cache_size: int = 20,
        cache_ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.cache_size = cache_size
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._cache: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.invalidations = 0

    @staticmethod
    def target_path(args: Dict[str, Any]) -> Optional[str]:
        for key in PATH_ARGUMENTS:
            value = args.get(key)
            if isinstance(value, str) and value:
                return value
        return None

    @staticmethod
    def resolve_path(path: str, context: Optional[ExecutionContext] = None) -> str:
        """Absolute form of ``path`` as the file tools see it."""
        base = Path(context.working_directory) if context is not None else Path.cwd()
        return str((base / path).resolve())

    def _cache_key(
        self, name: str, args: Dict[str, Any], context: ExecutionContext
    ) -> Optional[str]:
        if name not in CACHEABLE_TOOLS:
            return None
        path = self.target_path(args)
        if path is None:
            return None
        path = self.resolve_path(path, context)
        # Ranged reads of the same file must not collide
        extra = {k: v for k, v in args.items() if k not in PATH_ARGUMENTS}
        if extra:
            return f"{path}?{json.dumps(extra, sort_keys=True)}"
        return path

    def _get_cached(self, key: str) -> Optional[ToolResult]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if self._clock() - entry.created_at > self.cache_ttl:
            del self._cache[key]
            return None
        return entry.result

    def _store(self, key: str, result: ToolResult) -> None:
        self._cache[key] = _CacheEntry(result=result, created_at=self._clock())
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
            self.evictions += 1

    def invalidate(self, path: str, context: Optional[ExecutionContext] = None) -> int:
        """Drop every cached read of ``path``."""
        path = self.resolve_path(path, context)
        stale = [k for k in self._cache if k == path or k.startswith(f"{path}?")]
        for key in stale:
            del self._cache[key]
        self.invalidations += len(stale)
        return len(stale)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def execute(
        self,
        name: str,
        args: Union[str, Dict[str, Any], None],
        context: ExecutionContext,
    ) -> ToolResult:
        """
        Execute tool ``name``. Never raises for tool-level failures.

        Args:
            name: Tool name
            args: Parsed arguments or the raw JSON string from the provider
            context: Execution context of the current run

        Returns:
            ToolResult describing success or failure
        """
        try:
            parsed, repaired = parse_arguments(args)
        except MalformedArgumentsError as e:
            logger.warning(f"Malformed arguments for {name}: {e}")
            return ToolResult.failure(
                str(e), tool=name, error_type="MalformedToolCall"
            )
        if repaired:
            logger.info(f"Repaired malformed arguments for {name}")

        cache_key = self._cache_key(name, parsed, context)
        if cache_key is not None:
            cached = self._get_cached(cache_key)
            if cached is not None:
                self.hits += 1
                logger.debug(f"Cache hit for {name}: {cache_key}")
                return ToolResult(
                    success=cached.success,
                    content=cached.content,
                    error=cached.error,
                    metadata={**cached.metadata, "cached": True},
                )
            self.misses += 1

        if name in INVALIDATING_TOOLS:
            path = self.target_path(parsed)
            if path is not None:
                self.invalidate(path, context)

        try:
            result = await self.registry.execute(name, parsed, context)
        except Exception as e:
            logger.error(f"Tool execution failed: {name}: {e}")
            return ToolResult.failure(
                f"Tool execution failed: {e}",
                tool=name,
                error_type=type(e).__name__,
            )

        if repaired:
            result.metadata["arguments_repaired"] = True
        if cache_key is not None and result.success:
            self._store(cache_key, result)
        return result

    async def execute_call(self, call: ToolCall, context: ExecutionContext) -> ToolResult:
        return await self.execute(call.name, call.arguments, context)

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._cache),
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "invalidations": self.invalidations,
        }
