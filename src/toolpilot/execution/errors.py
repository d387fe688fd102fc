"""Error taxonomy for the agent execution engine.

Every failure that crosses a component boundary is normalized into an
:class:`AgentError` whose ``kind`` is one of a closed set. Handling sites
branch on the kind explicitly instead of probing exception attributes.
"""

import json
from enum import Enum
from typing import Any, Dict, Optional

from toolpilot.utils.retry import RetryConfig, get_status_code, is_retryable_error


class ErrorKind(Enum):
    """Closed set of engine error kinds."""

    # HTTP 429/500/502/503, network timeout or reset; retried with backoff
    TRANSIENT = "transient"

    # Provider emitted tool arguments that are not valid JSON
    MALFORMED = "malformed"

    # Same tool call repeated past its threshold; redirected, never raised
    DUPLICATE = "duplicate"

    # Token budget still above threshold after automatic compaction
    BUDGET_EXHAUSTED = "budget_exhausted"

    # Non-retryable provider error; aborts the run
    FATAL = "fatal"


TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_TRANSIENT_MARKERS = (
    "rate limit",
    "too many requests",
    "429",
    "500",
    "502",
    "503",
    "internal server error",
    "service unavailable",
    "bad gateway",
)

# Default wait before retrying after a transient failure without a hint
DEFAULT_TRANSIENT_DELAY = 2.0


class AgentError(Exception):
    """Engine error tagged with an :class:`ErrorKind`.

    Attributes:
        kind: Error classification
        message: Human-readable description
        retry_after: Suggested wait in seconds before retrying (transient only)
        cause: Original exception, if any
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        retry_after: Optional[float] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retry_after = retry_after
        self.cause = cause

    @property
    def is_transient(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        if self.cause is not None:
            data["error_type"] = type(self.cause).__name__
        return data

    def __repr__(self) -> str:
        return f"AgentError(kind={self.kind.value!r}, message={self.message!r})"


def _retry_hint(error: BaseException) -> Optional[float]:
    for attr in ("retry_after", "suggested_delay"):
        value = getattr(error, attr, None)
        if isinstance(value, (int, float)) and value > 0:
            return float(value)
    return None


def classify_error(error: BaseException) -> AgentError:
    """
    Normalize an arbitrary exception into an :class:`AgentError`.

    Args:
        error: Exception raised by a provider call or engine component

    Returns:
        AgentError with the matching kind; the original error is kept as ``cause``
    """
    if isinstance(error, AgentError):
        return error

    message = str(error) or type(error).__name__

    if isinstance(error, json.JSONDecodeError):
        return AgentError(ErrorKind.MALFORMED, message, cause=error)

    status = get_status_code(error)
    retry_after = _retry_hint(error)

    if status is not None:
        if status in TRANSIENT_STATUS_CODES:
            return AgentError(
                ErrorKind.TRANSIENT, message, retry_after=retry_after, cause=error
            )
        return AgentError(ErrorKind.FATAL, message, cause=error)

    lowered = message.lower()
    if retry_after is not None or any(m in lowered for m in _TRANSIENT_MARKERS):
        return AgentError(
            ErrorKind.TRANSIENT, message, retry_after=retry_after, cause=error
        )

    if is_retryable_error(error, RetryConfig()):
        return AgentError(ErrorKind.TRANSIENT, message, cause=error)

    return AgentError(ErrorKind.FATAL, message, cause=error)
