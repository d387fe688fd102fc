"""Utility modules for toolpilot."""

from toolpilot.utils.retry import (
    NETWORK_RETRY,
    QUICK_RETRY,
    RetryConfig,
    RetryManager,
    RetryResult,
    calculate_delay,
    is_retryable_error,
)
from toolpilot.utils.token_utils import (
    CharRatioTokenEstimator,
    ConservativeTokenEstimator,
    TokenEstimator,
)

__all__ = [
    "RetryConfig",
    "RetryManager",
    "RetryResult",
    "NETWORK_RETRY",
    "QUICK_RETRY",
    "calculate_delay",
    "is_retryable_error",
    "TokenEstimator",
    "CharRatioTokenEstimator",
    "ConservativeTokenEstimator",
]
