"""Configuration management for toolpilot."""

import logging
import os
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Standard logging here; structlog is configured later by setup_logging()
logger = logging.getLogger(__name__)

SENSITIVE_ENV_VAR_NAMES: frozenset = frozenset(
    {
        "OPENAI_API_KEY",
        "GROQ_API_KEY",
        "ANTHROPIC_API_KEY",
    }
)

_SENSITIVE_FIELD_NAMES: frozenset = frozenset(
    {name.lower() for name in SENSITIVE_ENV_VAR_NAMES}
)

SUPPORTED_PROVIDERS = ("openai", "groq", "claude")
INLINE_TOOL_CALL_MODES = ("off", "first", "all")
COMPRESSION_METHODS = ("summarize", "selective", "truncate")

DEFAULT_SYSTEM_PROMPT = (
    "You are a coding assistant working inside the user's project directory. "
    "Use the available tools to inspect and change files, and reply with a "
    "short plain-text answer once the task is done."
)


class Settings(BaseSettings):
    """Runtime settings for the agent engine, read from environment variables."""

    model_config = SettingsConfigDict(extra="ignore")

    _SENSITIVE_FIELDS: frozenset = _SENSITIVE_FIELD_NAMES

    def __repr__(self) -> str:
        """Return a representation with sensitive fields masked."""
        field_strs = []
        for field_name in type(self).model_fields:
            value = getattr(self, field_name, None)
            if field_name in self._SENSITIVE_FIELDS:
                masked = f"<{len(str(value))} chars>" if value else "None"
                field_strs.append(f"{field_name}={masked!r}")
            else:
                field_strs.append(f"{field_name}={value!r}")
        return f"{self.__class__.__name__}({', '.join(field_strs)})"

    def __str__(self) -> str:
        return self.__repr__()

    # AI provider configuration
    ai_provider: str = Field(default="groq", validation_alias="AI_PROVIDER")
    ai_model: str = Field(default="", validation_alias="AI_MODEL")
    openai_api_key: Optional[str] = Field(default=None, validation_alias="OPENAI_API_KEY")
    groq_api_key: Optional[str] = Field(default=None, validation_alias="GROQ_API_KEY")
    anthropic_api_key: Optional[str] = Field(
        default=None, validation_alias="ANTHROPIC_API_KEY"
    )
    provider_timeout: float = Field(
        default=30.0,
        validation_alias="PROVIDER_TIMEOUT",
        gt=0,
        description="Provider transport timeout in seconds.",
    )
    ai_temperature: str = Field(default="0.0", validation_alias="AI_TEMPERATURE")
    ai_max_tokens: int = Field(default=4096, validation_alias="AI_MAX_TOKENS", ge=1)

    # Agent loop
    max_iterations: int = Field(
        default=10,
        validation_alias="MAX_ITERATIONS",
        ge=1,
        le=100,
        description="Maximum provider round-trips per run (1-100).",
    )
    token_budget: int = Field(
        default=200000, validation_alias="TOOLPILOT_TOKEN_BUDGET", gt=0
    )
    auto_compact_threshold: float = Field(
        default=0.75,
        validation_alias="AUTO_COMPACT_THRESHOLD",
        gt=0.0,
        le=1.0,
        description="Budget fraction at which the transcript is compressed.",
    )

    # Memory compression
    max_context_tokens: int = Field(
        default=180000, validation_alias="MAX_CONTEXT_TOKENS", gt=0
    )
    preserve_recent_messages: int = Field(
        default=4, validation_alias="PRESERVE_RECENT_MESSAGES", ge=0
    )
    min_messages_before_compact: int = Field(
        default=8, validation_alias="MIN_MESSAGES_BEFORE_COMPACT", ge=1
    )
    compression_method: str = Field(
        default="summarize", validation_alias="COMPRESSION_METHOD"
    )

    inline_tool_calls: str = Field(
        default="first",
        validation_alias="INLINE_TOOL_CALLS",
        description="How inline <function=...> markers in text replies are handled: off, first or all.",
    )
    rate_limits_config: str = Field(
        default="",
        validation_alias="RATE_LIMITS_CONFIG",
        description="YAML mapping of model name to rate limit overrides.",
    )

    # Execution flags
    verbose: bool = Field(default=False, validation_alias="TOOLPILOT_VERBOSE")
    trace: bool = Field(default=False, validation_alias="TOOLPILOT_TRACE")
    auto_approve: bool = Field(default=False, validation_alias="TOOLPILOT_AUTO_APPROVE")
    headless: bool = Field(default=False, validation_alias="TOOLPILOT_HEADLESS")
    ci: bool = Field(default=False, validation_alias="CI")

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    json_logs: bool = Field(default=False, validation_alias="JSON_LOGS")

    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT, validation_alias="SYSTEM_PROMPT"
    )
    working_directory: str = Field(default=".", validation_alias="WORKING_DIRECTORY")

    @field_validator(
        "verbose",
        "trace",
        "auto_approve",
        "headless",
        "ci",
        "json_logs",
        mode="before",
    )
    @classmethod
    def parse_bool_from_env(cls, v: Any) -> bool:
        """Handle empty strings and various boolean representations from env vars."""
        if v is None or v == "":
            return False
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower().strip() in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("ai_provider", mode="before")
    @classmethod
    def validate_ai_provider(cls, value: Any) -> str:
        normalized = str(value or "groq").strip().lower()
        if normalized == "anthropic":
            return "claude"
        if normalized not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unsupported AI_PROVIDER '{value}'. Allowed values: {', '.join(SUPPORTED_PROVIDERS)}"
            )
        return normalized

    @field_validator("inline_tool_calls", mode="before")
    @classmethod
    def validate_inline_tool_calls(cls, value: Any) -> str:
        normalized = str(value or "first").strip().lower()
        if normalized not in INLINE_TOOL_CALL_MODES:
            logger.warning(
                f"Invalid INLINE_TOOL_CALLS '{value}'. Falling back to 'first'. "
                f"Allowed values: {', '.join(INLINE_TOOL_CALL_MODES)}."
            )
            return "first"
        return normalized

    @field_validator("compression_method", mode="before")
    @classmethod
    def validate_compression_method(cls, value: Any) -> str:
        normalized = str(value or "summarize").strip().lower()
        if normalized not in COMPRESSION_METHODS:
            logger.warning(
                f"Invalid COMPRESSION_METHOD '{value}'. Falling back to 'summarize'."
            )
            return "summarize"
        return normalized

    def get_ai_temperature(self) -> float:
        """Get AI temperature as float with safe conversion and validation."""
        try:
            temp = float(self.ai_temperature)
            return max(0.0, min(2.0, temp))
        except (ValueError, TypeError) as e:
            logger.warning(
                f"Invalid AI_TEMPERATURE '{self.ai_temperature}': {e}. Using default 0.0"
            )
            return 0.0

    def get_api_key(self, provider: Optional[str] = None) -> Optional[str]:
        provider = (provider or self.ai_provider).lower()
        return {
            "openai": self.openai_api_key,
            "groq": self.groq_api_key,
            "claude": self.anthropic_api_key,
        }.get(provider)

    def get_rate_limit_overrides(self) -> Dict[str, Dict[str, Any]]:
        """Parse RATE_LIMITS_CONFIG (YAML mapping of model -> limits)."""
        if not self.rate_limits_config or not self.rate_limits_config.strip():
            return {}

        try:
            data = yaml.safe_load(self.rate_limits_config)
        except yaml.YAMLError as e:
            logger.error(f"RATE_LIMITS_CONFIG parsing error: {e}")
            return {}

        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.error(f"Expected mapping from RATE_LIMITS_CONFIG, got {type(data)}")
            return {}

        overrides: Dict[str, Dict[str, Any]] = {}
        for model, limits in data.items():
            if not isinstance(limits, dict):
                logger.warning(f"Ignoring rate limit override for {model}: not a mapping")
                continue
            overrides[str(model)] = limits
        logger.info(f"Loaded rate limit overrides for {len(overrides)} model(s)")
        return overrides


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Load settings from environment variables.

    Args:
        env_file: Optional .env file loaded first; existing environment
            variables take precedence.
    """
    if env_file:
        if os.path.isfile(env_file):
            load_dotenv(env_file, override=False)
            logger.debug(f"Loaded environment from {env_file}")
        else:
            logger.warning(f"Env file not found: {env_file}")
    return Settings()
