"""Tests for settings and the provider token limit registry."""

from local_chat_toolkit.config import PROVIDER_TOKEN_LIMITS, Settings, get_provider_token_limits


class TestProviderTokenLimits:
    def test_registered_providers_are_consistent(self):
        for limits in PROVIDER_TOKEN_LIMITS.values():
            limits.validate_consistency()

    def test_lookup_is_case_insensitive(self):
        assert get_provider_token_limits("Embedded-Ollama") is PROVIDER_TOKEN_LIMITS["embedded-ollama"]

    def test_unknown_provider_falls_back_to_ollama(self):
        assert get_provider_token_limits("mystery") is PROVIDER_TOKEN_LIMITS["ollama"]
        assert get_provider_token_limits(None) is PROVIDER_TOKEN_LIMITS["ollama"]


class TestSettings:
    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LOCAL_CHAT_DEFAULT_MODEL", "qwen2.5:7b")
        monkeypatch.setenv("LOCAL_CHAT_RETRY_MAX_ATTEMPTS", "5")

        settings = Settings(_env_file=None)

        assert settings.default_model == "qwen2.5:7b"
        assert settings.retry.max_attempts == 5

    def test_retry_config_mirrors_settings(self):
        settings = Settings(_env_file=None, retry_base_delay=0.5, retry_backoff_multiplier=3.0, retry_max_delay=4.0)
        assert [settings.retry.delay_for(n) for n in (1, 2, 3)] == [0.5, 1.5, 4.0]
