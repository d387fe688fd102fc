"""Run-scoped token budget tracking."""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Set

from toolpilot.execution.types import TokenUsage
from toolpilot.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TOKEN_BUDGET = 200000
DEFAULT_THRESHOLDS = (75, 90)


@dataclass
class BudgetStats:
    used: int
    budget: int
    percentage: float
    prompt_tokens: int
    completion_tokens: int


ThresholdCallback = Callable[[int, float], None]


class BudgetTracker:
    """
    Cumulative token counter against a fixed budget.

    Each threshold (percent of budget) fires its callback at most once until
    :meth:`reset`. Automatic compaction is offered once per run: after
    :meth:`mark_compacted` ``should_auto_compact`` stays false until reset.
    """

    def __init__(
        self,
        budget: int = DEFAULT_TOKEN_BUDGET,
        thresholds: Sequence[int] = DEFAULT_THRESHOLDS,
        auto_compact_threshold: float = 75.0,
        on_threshold: Optional[ThresholdCallback] = None,
    ):
        if budget <= 0:
            raise ValueError(f"Token budget must be positive, got {budget}")
        self.budget = budget
        self.thresholds: List[int] = sorted(thresholds)
        self.auto_compact_threshold = auto_compact_threshold
        self.on_threshold = on_threshold or self._log_threshold
        self.usage = TokenUsage()
        self._warned: Set[int] = set()
        self._compacted = False

    @property
    def percentage(self) -> float:
        return self.usage.total_tokens / self.budget * 100

    def add_usage(self, usage: TokenUsage) -> None:
        """Add provider-reported usage and fire any newly crossed thresholds."""
        self.usage.add(usage)

        percentage = self.percentage
        for threshold in self.thresholds:
            if percentage >= threshold and threshold not in self._warned:
                self._warned.add(threshold)
                self.on_threshold(threshold, percentage)

    def _log_threshold(self, threshold: int, percentage: float) -> None:
        if threshold >= 90:
            logger.warning(
                f"Token budget at {percentage:.1f}%, conversation history should be compacted"
            )
        else:
            logger.warning(f"Token budget at {percentage:.1f}%")

    def should_auto_compact(self) -> bool:
        return self.percentage >= self.auto_compact_threshold and not self._compacted

    def mark_compacted(self) -> None:
        self._compacted = True

    @property
    def compacted(self) -> bool:
        return self._compacted

    def can_afford(self, estimated_tokens: int) -> bool:
        return self.usage.total_tokens + estimated_tokens < self.budget

    def set_budget(self, budget: int) -> None:
        if budget <= 0:
            raise ValueError(f"Token budget must be positive, got {budget}")
        self.budget = budget

    def reset(self) -> None:
        """Start a new run: clear counters, fired thresholds and the compaction flag."""
        self.usage = TokenUsage()
        self._warned.clear()
        self._compacted = False

    def get_usage(self) -> BudgetStats:
        return BudgetStats(
            used=self.usage.total_tokens,
            budget=self.budget,
            percentage=self.percentage,
            prompt_tokens=self.usage.prompt_tokens,
            completion_tokens=self.usage.completion_tokens,
        )

    def format_usage(self, bar_length: int = 30) -> str:
        """Plain-text usage report with a progress bar."""
        stats = self.get_usage()
        filled = min(bar_length, int(stats.percentage / 100 * bar_length))
        bar = "#" * filled + "-" * (bar_length - filled)
        return (
            "Token Budget\n"
            f"  Used: {stats.used:,} tokens\n"
            f"  Budget: {stats.budget:,} tokens\n"
            f"  Percentage: {stats.percentage:.1f}%\n"
            f"  [{bar}]\n"
            f"  Prompt tokens: {stats.prompt_tokens:,}\n"
            f"  Completion tokens: {stats.completion_tokens:,}"
        )
