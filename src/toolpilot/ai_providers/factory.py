"""Provider factory."""

from typing import Any, Dict

from toolpilot.utils.logger import get_logger

from .base import BaseProvider
from .claude import ClaudeProvider
from .groq import GroqProvider
from .openai import OpenAIProvider

logger = get_logger(__name__)

DEFAULT_AI_PROVIDER = "groq"

DEFAULT_MODELS = {
    "groq": "llama-3.3-70b-versatile",
    "openai": "gpt-4o",
    "claude": "claude-3-5-sonnet-latest",
    "anthropic": "claude-3-5-sonnet-latest",
}

PROVIDERS = {
    "groq": GroqProvider,
    "openai": OpenAIProvider,
    "claude": ClaudeProvider,
    "anthropic": ClaudeProvider,
}


def get_default_model(provider: str) -> str:
    """Get the default model for a given AI provider."""
    return DEFAULT_MODELS.get(provider.lower(), DEFAULT_MODELS[DEFAULT_AI_PROVIDER])


def create_provider(provider_name: str, config: Dict[str, Any]) -> BaseProvider:
    """Create provider instance based on provider name and config.

    Raises:
        ValueError: If the provider name is unknown
    """
    provider_cls = PROVIDERS.get(provider_name.lower())
    if provider_cls is None:
        raise ValueError(
            f"Unknown provider '{provider_name}'. Supported: {', '.join(sorted(PROVIDERS))}"
        )
    return provider_cls(config)


def get_provider_config(settings) -> Dict[str, Any]:
    """Build provider config from settings."""
    provider = (settings.ai_provider or DEFAULT_AI_PROVIDER).lower()

    config = {
        "ai_provider": provider,
        "model_id": settings.ai_model or get_default_model(provider),
        "temperature": settings.get_ai_temperature(),
        "max_tokens": settings.ai_max_tokens,
        "timeout": settings.provider_timeout,
        "api_key": settings.get_api_key(provider),
    }

    logger.debug(f"Provider config: {provider} / {config['model_id']}")
    return config
