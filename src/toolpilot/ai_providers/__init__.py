"""AI provider adapters."""

from .base import (
    BaseProvider,
    ProviderError,
    ProviderResponse,
    ResponseType,
    StopReason,
    TemporaryServiceError,
)
from .claude import ClaudeProvider
from .factory import create_provider, get_default_model, get_provider_config
from .groq import GroqProvider
from .openai import OpenAIProvider

__all__ = [
    "BaseProvider",
    "ProviderError",
    "ProviderResponse",
    "ResponseType",
    "StopReason",
    "TemporaryServiceError",
    "ClaudeProvider",
    "GroqProvider",
    "OpenAIProvider",
    "create_provider",
    "get_default_model",
    "get_provider_config",
]
