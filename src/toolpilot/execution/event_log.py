"""Append-only JSONL trace of an agent run.

Enabled by the trace flag. One JSON object per line, never rewritten, with
sorted keys so traces of identical runs diff cleanly.
"""

import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from toolpilot.utils.logger import get_logger

logger = get_logger(__name__)

MAX_TRACE_TEXT = 5000


def _truncate(text: str, limit: int = MAX_TRACE_TEXT) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"... [truncated, full size: {len(text)} chars]"


class EventLog:
    """Append-only event log for one session."""

    def __init__(self, session_id: str, log_dir: str):
        self.session_id = session_id
        self.log_dir = Path(log_dir).resolve()
        short_uuid = str(uuid.uuid4())[:8]
        self.log_path = self.log_dir / f"{session_id}_{short_uuid}.jsonl"
        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.debug(f"EventLog initialized: {self.log_path}")

    def append_event(self, event_type: str, data: Dict[str, Any]) -> None:
        event = {
            "timestamp": datetime.now().isoformat(),
            "event_type": event_type,
            "session_id": self.session_id,
            **data,
        }
        try:
            json_line = json.dumps(event, sort_keys=True, ensure_ascii=False, default=str)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json_line + "\n")
        except OSError as e:
            # Tracing must never break execution
            logger.error(f"Failed to append event to log: {e}")

    def append_provider_call(
        self,
        iteration: int,
        usage: Dict[str, int],
        response_type: str,
        content: str,
        tool_names: Optional[List[str]] = None,
        attempts: int = 1,
    ) -> None:
        data: Dict[str, Any] = {
            "iteration": iteration,
            "response_type": response_type,
            "content": _truncate(content or ""),
            "attempts": attempts,
            **usage,
        }
        if tool_names:
            data["tool_names"] = tool_names
        self.append_event("provider_call", data)

    def append_tool_execution(
        self,
        iteration: int,
        tool_name: str,
        arguments: str,
        success: bool,
        result: str,
        skipped: bool = False,
    ) -> None:
        self.append_event(
            "tool_execution",
            {
                "iteration": iteration,
                "tool": tool_name,
                "arguments": _truncate(arguments, 2000),
                "success": success,
                "result": _truncate(result),
                "skipped": skipped,
            },
        )

    def append_compression(self, iteration: int, record: Dict[str, Any], trigger: str) -> None:
        self.append_event(
            "compression", {"iteration": iteration, "trigger": trigger, **record}
        )

    def append_run_finished(self, result: Dict[str, Any]) -> None:
        self.append_event("run_finished", {**result, "content": _truncate(result.get("content", ""))})

    def get_recent_events(self, count: int = 10) -> List[Dict[str, Any]]:
        """Read the last ``count`` events (most recent last)."""
        if not self.log_path.exists():
            return []

        with open(self.log_path, "r", encoding="utf-8") as f:
            lines = f.readlines()

        events = []
        for line in lines[-count:]:
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError as e:
                logger.warning(f"Failed to parse event line: {e}")
        return events
