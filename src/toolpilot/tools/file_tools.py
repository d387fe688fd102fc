"""Built-in file system tools.

All paths are resolved against the run's working directory (taken from the
ExecutionContext) and may not escape it.
"""

import os
from pathlib import Path
from typing import Optional

from toolpilot.execution.types import ExecutionContext, ToolResult
from toolpilot.utils.logger import get_logger

from .decorator import tool
from .registry import ToolRegistry

logger = get_logger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
MAX_GLOB_RESULTS = 1000
DEFAULT_LINE_LIMIT = 2000
MAX_LINE_LENGTH = 2000


def _working_directory(context: Optional[ExecutionContext]) -> Path:
    if context is None:
        return Path.cwd()
    return Path(context.working_directory).resolve()


def _validate_path(file_path: str, context: Optional[ExecutionContext]) -> Path:
    """Resolve ``file_path`` inside the working directory.

    Raises:
        ValueError: If the path escapes the working directory.
    """
    work_dir = _working_directory(context)
    if os.path.isabs(file_path):
        full_path = Path(file_path).resolve()
    else:
        full_path = (work_dir / file_path).resolve()

    try:
        full_path.relative_to(work_dir)
    except ValueError:
        raise ValueError(
            f"Path traversal not allowed: '{file_path}' escapes working directory"
        )
    return full_path


@tool
def list_files(
    pattern: str = "**/*",
    path: str = "",
    max_results: int = MAX_GLOB_RESULTS,
    context: Optional[ExecutionContext] = None,
) -> ToolResult:
    """List files matching a glob pattern, newest first.

    Args:
        pattern: Glob pattern such as '*.py' or 'src/**/*.ts'.
        path: Optional subdirectory to search in, relative to the working directory.
        max_results: Maximum number of paths to return.
    """
    work_dir = _working_directory(context)
    base_dir = _validate_path(path, context) if path else work_dir
    if not base_dir.is_dir():
        return ToolResult.failure(f"Not a directory: {path}")

    matches = []
    for file_path in base_dir.glob(pattern):
        if not file_path.is_file():
            continue
        try:
            rel_path = file_path.relative_to(work_dir)
            mtime = file_path.stat().st_mtime
        except (OSError, ValueError):
            continue
        if rel_path.parts and rel_path.parts[0] == ".toolpilot":
            continue
        matches.append((str(rel_path), mtime))

    matches.sort(key=lambda m: m[1], reverse=True)
    paths = [m[0] for m in matches[:max_results]]
    if not paths:
        return ToolResult.ok(f"No files found matching pattern: {pattern}", count=0)
    return ToolResult.ok(
        f"Found {len(paths)} file(s):\n" + "\n".join(paths), count=len(paths)
    )


@tool
def read_file(
    file_path: str,
    offset: int = 1,
    limit: int = DEFAULT_LINE_LIMIT,
    context: Optional[ExecutionContext] = None,
) -> ToolResult:
    """Read a file with line numbers (like 'cat -n').

    Args:
        file_path: Path to the file, relative to the working directory.
        offset: Line number to start reading from (1-indexed).
        limit: Maximum number of lines to read.
    """
    full_path = _validate_path(file_path, context)
    if not full_path.is_file():
        return ToolResult.failure(f"File not found: {file_path}")

    file_size = full_path.stat().st_size
    if file_size > MAX_FILE_SIZE:
        return ToolResult.failure(
            f"File too large ({file_size:,} bytes, max {MAX_FILE_SIZE:,}): {file_path}"
        )

    offset = max(1, offset)
    start_idx = offset - 1
    end_idx = start_idx + limit
    numbered_lines = []
    total_lines = 0

    with open(full_path, "r", encoding="utf-8", errors="replace") as f:
        for line_num, line in enumerate(f):
            total_lines = line_num + 1
            if start_idx <= line_num < end_idx:
                line_content = line.rstrip("\n")
                if len(line_content) > MAX_LINE_LENGTH:
                    line_content = line_content[:MAX_LINE_LENGTH] + "..."
                numbered_lines.append(f"{line_num + 1:6d}\t{line_content}")

    if total_lines == 0:
        return ToolResult.ok(f"File is empty: {file_path}", lines=0)

    if offset > 1 or end_idx < total_lines:
        actual_end = min(offset + len(numbered_lines) - 1, total_lines)
        header = f"# File: {file_path} (lines {offset}-{actual_end} of {total_lines})"
    else:
        header = f"# File: {file_path} ({total_lines} lines)"
    return ToolResult.ok(header + "\n" + "\n".join(numbered_lines), lines=total_lines)


@tool(requires_approval=True)
def write_file(
    file_path: str, content: str, context: Optional[ExecutionContext] = None
) -> ToolResult:
    """Create or overwrite a file.

    Args:
        file_path: Path to the file, relative to the working directory.
        content: Full file content to write.
    """
    full_path = _validate_path(file_path, context)
    full_path.parent.mkdir(parents=True, exist_ok=True)
    existed = full_path.exists()
    full_path.write_text(content, encoding="utf-8")
    action = "Updated" if existed else "Created"
    return ToolResult.ok(
        f"{action} {file_path} ({len(content)} chars)", path=file_path, created=not existed
    )


@tool(requires_approval=True)
def edit_file(
    file_path: str,
    old_string: str,
    new_string: str,
    replace_all: bool = False,
    context: Optional[ExecutionContext] = None,
) -> ToolResult:
    """Replace an exact string in a file.

    Args:
        file_path: Path to the file, relative to the working directory.
        old_string: Exact text to replace; must be unique unless replace_all is set.
        new_string: Replacement text.
        replace_all: Replace every occurrence.
    """
    full_path = _validate_path(file_path, context)
    if not full_path.is_file():
        return ToolResult.failure(f"File not found: {file_path}")

    original = full_path.read_text(encoding="utf-8")
    occurrences = original.count(old_string)
    if occurrences == 0:
        return ToolResult.failure(f"String not found in {file_path}")
    if occurrences > 1 and not replace_all:
        return ToolResult.failure(
            f"String occurs {occurrences} times in {file_path}; "
            "provide more context or set replace_all"
        )

    count = occurrences if replace_all else 1
    full_path.write_text(original.replace(old_string, new_string, count), encoding="utf-8")
    return ToolResult.ok(
        f"Edited {file_path} ({count} replacement(s))", path=file_path, replacements=count
    )


def register_file_tools(registry: Optional[ToolRegistry] = None) -> ToolRegistry:
    """Register the built-in file tools on ``registry`` (or a new one)."""
    registry = registry or ToolRegistry()
    for t in (list_files, read_file, write_file, edit_file):
        registry.register(t)
    logger.debug(f"Registered {len(registry)} file tools")
    return registry
