"""JSON session persistence.

Sessions live in ``<working_directory>/.toolpilot/sessions/<session_id>.json``
and are rewritten atomically after every mutation, so an interrupted run
leaves the history up to its last produced message on disk.
"""

import json
import os
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from toolpilot.execution.types import Message
from toolpilot.utils.logger import get_logger

logger = get_logger(__name__)

SESSIONS_SUBDIR = os.path.join(".toolpilot", "sessions")
MAX_HISTORY_MESSAGES = 20
MAX_PREVIOUS_TASKS = 10
MAX_WORKING_FILES = 15


def _now() -> str:
    return datetime.now().isoformat()


@dataclass
class Session:
    """Persisted conversation state for one session."""

    session_id: str
    messages: List[Message] = field(default_factory=list)
    working_files: List[str] = field(default_factory=list)
    current_task: Optional[str] = None
    previous_tasks: List[str] = field(default_factory=list)
    last_activity: str = field(default_factory=_now)
    created: str = field(default_factory=_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "sessionId": self.session_id,
            "messages": [m.to_dict() for m in self.messages],
            "workingFiles": list(self.working_files),
            "previousTasks": list(self.previous_tasks),
            "lastActivity": self.last_activity,
            "created": self.created,
            "metadata": self.metadata,
        }
        if self.current_task is not None:
            data["currentTask"] = self.current_task
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            session_id=data["sessionId"],
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            working_files=list(data.get("workingFiles", [])),
            current_task=data.get("currentTask"),
            previous_tasks=list(data.get("previousTasks", [])),
            last_activity=data.get("lastActivity") or _now(),
            created=data.get("created") or _now(),
            metadata=dict(data.get("metadata") or {}),
        )


def _drop_orphaned_tool_messages(messages: List[Message]) -> List[Message]:
    """Remove leading tool messages whose requesting assistant message was cut."""
    start = 0
    while start < len(messages) and messages[start].role == "tool":
        start += 1
    return messages[start:]


class SessionStore:
    """Loads, mutates and persists the current :class:`Session`."""

    def __init__(
        self,
        working_directory: str,
        max_history_messages: int = MAX_HISTORY_MESSAGES,
    ):
        self.working_directory = working_directory
        self.sessions_dir = Path(working_directory) / SESSIONS_SUBDIR
        self.max_history_messages = max_history_messages
        self._current: Optional[Session] = None
        self._ensure_sessions_directory()

    def _ensure_sessions_directory(self) -> None:
        if self.sessions_dir.exists() and not self.sessions_dir.is_dir():
            backup = self.sessions_dir.with_name(self.sessions_dir.name + ".backup")
            logger.warning(f"{self.sessions_dir} exists as a file, renaming to {backup}")
            self.sessions_dir.rename(backup)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    def session_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}.json"

    @property
    def current(self) -> Session:
        if self._current is None:
            return self.load_or_create()
        return self._current

    def create(self, session_id: Optional[str] = None) -> Session:
        session_id = session_id or f"session-{int(time.time() * 1000)}"
        self._current = Session(session_id=session_id)
        self.save()
        return self._current

    def load(self, session_id: str) -> Optional[Session]:
        """Load and activate an existing session; None if missing or unreadable."""
        path = self.session_path(session_id)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                session = Session.from_dict(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Failed to load session {session_id}: {e}")
            return None

        session.last_activity = _now()
        self._current = session
        return session

    def load_or_create(self, session_id: Optional[str] = None) -> Session:
        if session_id:
            session = self.load(session_id)
            if session is not None:
                return session
        return self.create(session_id)

    def save(self) -> None:
        """Write the current session atomically (temp file + replace)."""
        if self._current is None:
            return
        path = self.session_path(self._current.session_id)
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self.sessions_dir), prefix=".tmp-", suffix=".json"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._current.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Failed to save session {self._current.session_id}: {e}")

    def _touch(self) -> None:
        self.current.last_activity = _now()

    def add_message(self, message: Message) -> None:
        self.add_messages([message])

    def add_messages(self, messages: List[Message]) -> None:
        session = self.current
        session.messages.extend(messages)
        if len(session.messages) > self.max_history_messages:
            session.messages = _drop_orphaned_tool_messages(
                session.messages[-self.max_history_messages :]
            )
        self._touch()
        self.save()

    def replace_messages(self, messages: List[Message]) -> None:
        self.current.messages = list(messages)
        self._touch()
        self.save()

    def set_current_task(self, task: str) -> None:
        session = self.current
        if session.current_task:
            session.previous_tasks.append(session.current_task)
            session.previous_tasks = session.previous_tasks[-MAX_PREVIOUS_TASKS:]
        session.current_task = task
        self._touch()
        self.save()

    def add_working_file(self, file_path: str) -> None:
        session = self.current
        if file_path in session.working_files:
            return
        session.working_files.append(file_path)
        session.working_files = session.working_files[-MAX_WORKING_FILES:]
        self._touch()
        self.save()

    def remove_working_file(self, file_path: str) -> None:
        session = self.current
        if file_path in session.working_files:
            session.working_files.remove(file_path)
            self._touch()
            self.save()

    def update_metadata(self, key: str, value: Any) -> None:
        self.current.metadata[key] = value
        self._touch()
        self.save()

    def get_history(self) -> List[Message]:
        return list(self.current.messages)

    def get_recent_messages(self, count: int = 6) -> List[Message]:
        if count <= 0:
            return []
        return _drop_orphaned_tool_messages(self.current.messages[-count:])

    def get_summary(self) -> str:
        """Markdown summary of the session used as prompt context."""
        session = self.current
        parts = []
        if session.current_task:
            parts.append(f"**Current Task:** {session.current_task}")
        if session.previous_tasks:
            parts.append(f"**Recent Tasks:** {', '.join(session.previous_tasks[-3:])}")
        if session.working_files:
            parts.append(f"**Working Files:** {', '.join(session.working_files[-5:])}")
        return "\n".join(parts)

    def clear(self) -> None:
        """Drop conversation state but keep the session id and creation time."""
        session = self.current
        self._current = Session(session_id=session.session_id, created=session.created)
        self.save()

    def list_recent_sessions(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recently active sessions first."""
        sessions = []
        for path in self.sessions_dir.glob("*.json"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.debug(f"Skipping unreadable session file {path}: {e}")
                continue
            sessions.append(
                {
                    "sessionId": data.get("sessionId", path.stem),
                    "lastActivity": data.get("lastActivity", ""),
                    "currentTask": data.get("currentTask"),
                }
            )
        sessions.sort(key=lambda s: s["lastActivity"], reverse=True)
        return sessions[:limit]

    def get_last_session(self) -> Optional[Dict[str, Any]]:
        sessions = self.list_recent_sessions(1)
        return sessions[0] if sessions else None

    def cleanup_old_sessions(self, max_age_days: int = 7) -> int:
        """Delete session files not modified within ``max_age_days``."""
        cutoff = (datetime.now() - timedelta(days=max_age_days)).timestamp()
        removed = 0
        for path in self.sessions_dir.glob("*.json"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning(f"Failed to remove old session {path}: {e}")
        if removed:
            logger.info(f"Removed {removed} sessions older than {max_age_days} days")
        return removed
