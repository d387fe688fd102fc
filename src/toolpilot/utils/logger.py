"""Logging setup for the agent engine.

Engine modules log through structlog (``logger = get_logger(__name__)``).
Library and SDK output goes through the stdlib root logger, which gets a
stderr handler and, for headless runs, an in-memory capture handler whose
text can be attached to the run report.
"""

import io
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, List, Optional

import structlog

CAPTURE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class JsonLogFormatter(logging.Formatter):
    """Render a stdlib record as one JSON object with the keys structlog emits."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


_capture: Optional[io.StringIO] = None


def _structlog_processors(json_logs: bool) -> List[Any]:
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        renderer,
    ]


def _stream_handler(stream, formatter: logging.Formatter, level: int) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    return handler


def setup_logging(
    level: str = "INFO", json_logs: bool = False, capture_logs: bool = False
):
    """
    Configure structlog and the stdlib root logger.

    Calling it again replaces the previous configuration, including any
    capture buffer.

    Args:
        level: Minimum level name (DEBUG, INFO, ...)
        json_logs: Emit JSON lines instead of console-formatted text
        capture_logs: Also keep stdlib output in memory for get_captured_logs()
    """
    global _capture

    log_level = getattr(logging, level.upper())
    structlog.configure(
        processors=_structlog_processors(json_logs),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    console_format = JsonLogFormatter() if json_logs else logging.Formatter("%(message)s")
    root.addHandler(_stream_handler(sys.stderr, console_format, log_level))

    _capture = io.StringIO() if capture_logs else None
    if _capture is not None:
        capture_format = JsonLogFormatter() if json_logs else logging.Formatter(CAPTURE_FORMAT)
        root.addHandler(_stream_handler(_capture, capture_format, log_level))


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def bind_run_context(**values: Any) -> None:
    """Attach values (session id, model) to every log line of the current run."""
    structlog.contextvars.bind_contextvars(**values)


def clear_run_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_captured_logs() -> Optional[str]:
    """Text captured since the last setup or clear; None when capture is off."""
    return _capture.getvalue() if _capture is not None else None


def clear_log_buffer():
    if _capture is not None:
        _capture.seek(0)
        _capture.truncate(0)
