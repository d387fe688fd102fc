"""Inline tool-call markers in plain-text replies.

Some models answer with text such as ``<function=read_file{"file_path": "a.py"}>``
instead of a native tool call. The parser extracts those markers so the loop
can execute them, and strips them from text that is returned to the user.
"""

import json
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from toolpilot.execution.types import ToolCall
from toolpilot.utils.logger import get_logger

logger = get_logger(__name__)

MODE_OFF = "off"
MODE_FIRST = "first"
MODE_ALL = "all"
MODES = (MODE_OFF, MODE_FIRST, MODE_ALL)

_MARKER_START = re.compile(r"<function=([A-Za-z0-9_.\-]+)")
_CLOSING_TAG = re.compile(r"</function>")
_decoder = json.JSONDecoder()


@dataclass
class InlineMarker:
    """One ``<function=...>`` occurrence.

    ``arguments`` is None when the marker's JSON could not be parsed.
    """

    name: str
    arguments: Optional[Dict[str, Any]]
    start: int
    end: int

    @property
    def valid(self) -> bool:
        return self.arguments is not None


def _skip_spaces(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


def _scan_marker(text: str, name: str, start: int, pos: int) -> InlineMarker:
    pos = _skip_spaces(text, pos)
    wrapped = pos < len(text) and text[pos] == "("
    if wrapped:
        pos = _skip_spaces(text, pos + 1)

    arguments: Optional[Dict[str, Any]] = {}
    if pos < len(text) and text[pos] == "{":
        try:
            parsed, pos = _decoder.raw_decode(text, pos)
            arguments = parsed if isinstance(parsed, dict) else None
        except json.JSONDecodeError:
            arguments = None

    close = text.find(">", pos)
    if arguments is not None:
        tail = text[pos:close] if close != -1 else text[pos:]
        if tail.strip() not in ("", ")" if wrapped else ""):
            arguments = None
    end = close + 1 if close != -1 else len(text)
    return InlineMarker(name=name, arguments=arguments, start=start, end=end)


class InlineToolCallParser:
    """Parses inline tool-call markers according to a trust mode.

    Modes:
        off: markers are prose and never executed
        first: only the first parsable marker is executed
        all: every parsable marker is executed in order
    """

    def __init__(self, mode: str = MODE_FIRST):
        if mode not in MODES:
            raise ValueError(f"Invalid inline tool call mode '{mode}'")
        self.mode = mode

    @property
    def enabled(self) -> bool:
        return self.mode != MODE_OFF

    def find_markers(self, text: str) -> List[InlineMarker]:
        markers: List[InlineMarker] = []
        pos = 0
        while True:
            match = _MARKER_START.search(text or "", pos)
            if match is None:
                break
            marker = _scan_marker(text, match.group(1), match.start(), match.end())
            markers.append(marker)
            pos = max(marker.end, match.end())
        return markers

    def has_markers(self, text: str) -> bool:
        return self.enabled and _MARKER_START.search(text or "") is not None

    def parse(self, text: str) -> List[ToolCall]:
        """Tool calls to execute for ``text``; malformed markers are skipped."""
        if not self.enabled:
            return []

        calls: List[ToolCall] = []
        for marker in self.find_markers(text):
            if not marker.valid:
                logger.warning(f"Skipping malformed inline tool call: {text[marker.start:marker.end]}")
                continue
            calls.append(
                ToolCall(
                    id=f"inline_{uuid.uuid4().hex[:12]}",
                    name=marker.name,
                    arguments=json.dumps(marker.arguments),
                )
            )
            if self.mode == MODE_FIRST:
                break
        return calls

    def strip(self, text: str) -> str:
        """Remove every marker and closing tag from ``text``."""
        if not text:
            return ""
        pieces: List[str] = []
        pos = 0
        for marker in self.find_markers(text):
            pieces.append(text[pos : marker.start])
            pos = marker.end
        pieces.append(text[pos:])
        return _CLOSING_TAG.sub("", "".join(pieces)).strip()
