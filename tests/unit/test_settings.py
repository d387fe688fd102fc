"""Unit tests for settings configuration."""

import os
from unittest.mock import patch

import pytest

from toolpilot.config.settings import DEFAULT_SYSTEM_PROMPT, Settings, load_settings


class TestSettingsDefaults:
    """Test Settings instantiation and defaults."""

    def test_default_values(self):
        """Test that Settings has sensible defaults."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings()
            assert settings.ai_provider == "groq"
            assert settings.ai_model == ""
            assert settings.max_iterations == 10
            assert settings.token_budget == 200000
            assert settings.auto_compact_threshold == 0.75
            assert settings.max_context_tokens == 180000
            assert settings.preserve_recent_messages == 4
            assert settings.min_messages_before_compact == 8
            assert settings.compression_method == "summarize"
            assert settings.inline_tool_calls == "first"
            assert settings.provider_timeout == 30.0
            assert settings.log_level == "INFO"
            assert settings.trace is False
            assert settings.system_prompt == DEFAULT_SYSTEM_PROMPT

    def test_load_settings_returns_settings(self):
        """Test that load_settings returns a Settings instance."""
        assert isinstance(load_settings(), Settings)


class TestSettingsValidation:
    """Test field validation from environment variables."""

    def test_anthropic_alias(self):
        with patch.dict(os.environ, {"AI_PROVIDER": "Anthropic"}):
            assert Settings().ai_provider == "claude"

    def test_unsupported_provider(self):
        with patch.dict(os.environ, {"AI_PROVIDER": "gemini"}):
            with pytest.raises(ValueError):
                Settings()

    def test_max_iterations_bounds(self):
        with patch.dict(os.environ, {"MAX_ITERATIONS": "0"}):
            with pytest.raises(ValueError):
                Settings()
        with patch.dict(os.environ, {"MAX_ITERATIONS": "101"}):
            with pytest.raises(ValueError):
                Settings()
        with patch.dict(os.environ, {"MAX_ITERATIONS": "25"}):
            assert Settings().max_iterations == 25

    def test_token_budget_env(self):
        with patch.dict(os.environ, {"TOOLPILOT_TOKEN_BUDGET": "5000"}):
            assert Settings().token_budget == 5000

    @pytest.mark.parametrize(
        "value,expected",
        [("true", True), ("1", True), ("YES", True), ("on", True), ("false", False), ("", False)],
    )
    def test_boolean_flags(self, value, expected):
        with patch.dict(os.environ, {"TOOLPILOT_VERBOSE": value, "CI": value}):
            settings = Settings()
            assert settings.verbose is expected
            assert settings.ci is expected

    def test_invalid_inline_mode_falls_back(self):
        with patch.dict(os.environ, {"INLINE_TOOL_CALLS": "sometimes"}):
            assert Settings().inline_tool_calls == "first"
        with patch.dict(os.environ, {"INLINE_TOOL_CALLS": "ALL"}):
            assert Settings().inline_tool_calls == "all"

    def test_invalid_compression_method_falls_back(self):
        with patch.dict(os.environ, {"COMPRESSION_METHOD": "zip"}):
            assert Settings().compression_method == "summarize"
        with patch.dict(os.environ, {"COMPRESSION_METHOD": "truncate"}):
            assert Settings().compression_method == "truncate"

    @pytest.mark.parametrize(
        "value,expected", [("0.7", 0.7), ("5", 2.0), ("-1", 0.0), ("warm", 0.0)]
    )
    def test_temperature(self, value, expected):
        with patch.dict(os.environ, {"AI_TEMPERATURE": value}):
            assert Settings().get_ai_temperature() == expected


class TestSecrets:
    """Test API key lookup and masking."""

    def test_get_api_key(self):
        env = {"GROQ_API_KEY": "gsk-1", "OPENAI_API_KEY": "sk-2", "ANTHROPIC_API_KEY": "ak-3"}
        with patch.dict(os.environ, env):
            settings = Settings()
            assert settings.get_api_key() == "gsk-1"
            assert settings.get_api_key("openai") == "sk-2"
            assert settings.get_api_key("claude") == "ak-3"
            assert settings.get_api_key("unknown") is None

    def test_repr_masks_keys(self):
        with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-secret"}):
            text = repr(Settings())

        assert "sk-secret" not in text
        assert "openai_api_key='<9 chars>'" in text
        assert "groq_api_key='None'" in text
        assert str(Settings()).startswith("Settings(")


class TestRateLimitOverrides:
    """Test RATE_LIMITS_CONFIG parsing."""

    def test_mapping(self):
        config = "llama-3.3-70b-versatile:\n  tokens_per_minute: 12000\nbroken: 5\n"
        with patch.dict(os.environ, {"RATE_LIMITS_CONFIG": config}):
            overrides = Settings().get_rate_limit_overrides()

        assert overrides == {"llama-3.3-70b-versatile": {"tokens_per_minute": 12000}}

    @pytest.mark.parametrize("config", ["", "   ", "[unclosed", "- a\n- b\n"])
    def test_unusable_config(self, config):
        with patch.dict(os.environ, {"RATE_LIMITS_CONFIG": config}):
            assert Settings().get_rate_limit_overrides() == {}


class TestLoadSettings:
    """Test .env loading."""

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("AI_MODEL=from-dotenv\nAI_PROVIDER=openai\n")

        with patch.dict(os.environ, {"AI_PROVIDER": "groq"}):
            os.environ.pop("AI_MODEL", None)
            settings = load_settings(str(env_file))

        assert settings.ai_model == "from-dotenv"
        # Existing environment wins over the file
        assert settings.ai_provider == "groq"

    def test_missing_env_file(self, tmp_path):
        settings = load_settings(str(tmp_path / "missing.env"))
        assert isinstance(settings, Settings)
