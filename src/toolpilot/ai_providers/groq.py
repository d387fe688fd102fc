"""Groq provider adapter.

Groq exposes an OpenAI-compatible chat-completions endpoint, so this adapter
only changes the base URL, the key variable and which models accept tools.
"""

from .openai import OpenAIProvider

GROQ_BASE_URL = "https://api.groq.com/openai/v1"

# Model families that reliably emit native tool calls on Groq
TOOL_CAPABLE_PREFIXES = (
    "llama-3.1",
    "llama-3.3",
    "llama3-groq",
    "meta-llama/llama-4",
    "moonshotai/kimi",
    "openai/gpt-oss",
    "qwen",
)


class GroqProvider(OpenAIProvider):
    """Groq provider adapter."""

    name = "groq"
    api_key_env = "GROQ_API_KEY"
    default_base_url = GROQ_BASE_URL

    def supports_tools(self) -> bool:
        model = self.model_id.lower()
        return any(model.startswith(prefix) for prefix in TOOL_CAPABLE_PREFIXES)
