"""Tests for run-scoped token budget tracking."""

from unittest.mock import Mock

import pytest

from toolpilot.execution.budget import BudgetTracker
from toolpilot.execution.types import TokenUsage


def usage(total, prompt=None, completion=0):
    return TokenUsage(prompt if prompt is not None else total, completion, total)


class TestBudgetTracker:
    """Test BudgetTracker counters, thresholds and compaction flag."""

    def test_rejects_non_positive_budget(self):
        with pytest.raises(ValueError):
            BudgetTracker(0)
        tracker = BudgetTracker(100)
        with pytest.raises(ValueError):
            tracker.set_budget(-5)

    def test_accumulates_usage(self):
        tracker = BudgetTracker(1000)
        tracker.add_usage(TokenUsage(100, 20, 120))
        tracker.add_usage(TokenUsage(50, 30, 80))

        stats = tracker.get_usage()
        assert stats.used == 200
        assert stats.prompt_tokens == 150
        assert stats.completion_tokens == 50
        assert stats.percentage == pytest.approx(20.0)

    def test_thresholds_fire_once(self):
        callback = Mock()
        tracker = BudgetTracker(1000, on_threshold=callback)

        tracker.add_usage(usage(760))
        tracker.add_usage(usage(10))
        assert callback.call_count == 1
        assert callback.call_args.args[0] == 75

        tracker.add_usage(usage(150))
        assert callback.call_count == 2
        assert callback.call_args.args[0] == 90

    def test_single_jump_fires_every_crossed_threshold(self):
        callback = Mock()
        tracker = BudgetTracker(1000, on_threshold=callback)

        tracker.add_usage(usage(950))

        assert [c.args[0] for c in callback.call_args_list] == [75, 90]

    def test_reset_rearms_thresholds(self):
        callback = Mock()
        tracker = BudgetTracker(1000, on_threshold=callback)
        tracker.add_usage(usage(800))
        tracker.reset()

        assert tracker.get_usage().used == 0
        tracker.add_usage(usage(800))
        assert callback.call_count == 2

    def test_auto_compact_offered_once_per_run(self):
        tracker = BudgetTracker(1000, auto_compact_threshold=50.0)
        tracker.add_usage(usage(400))
        assert tracker.should_auto_compact() is False

        tracker.add_usage(usage(100))
        assert tracker.should_auto_compact() is True

        tracker.mark_compacted()
        assert tracker.compacted is True
        assert tracker.should_auto_compact() is False

        tracker.reset()
        assert tracker.compacted is False

    def test_can_afford(self):
        tracker = BudgetTracker(1000)
        tracker.add_usage(usage(900))
        assert tracker.can_afford(50) is True
        assert tracker.can_afford(100) is False

    def test_format_usage(self):
        tracker = BudgetTracker(2000)
        tracker.add_usage(TokenUsage(800, 200, 1000))

        report = tracker.format_usage(bar_length=10)

        assert "Used: 1,000 tokens" in report
        assert "Budget: 2,000 tokens" in report
        assert "Percentage: 50.0%" in report
        assert "[#####-----]" in report
