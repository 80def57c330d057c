"""
Runtime configuration.

'Settings' is read from environment variables prefixed with 'LOCAL_CHAT_' (and an
optional '.env' file), e.g. 'LOCAL_CHAT_DEFAULT_MODEL=llama3.2:3b'. Timeouts are in
seconds; 'None' disables the bound for that call.

'PROVIDER_TOKEN_LIMITS' is the registry of per-provider token limits. Unknown
providers fall back to the 'ollama' limits.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from local_chat_toolkit.utils.errors import ConfigurationError
from local_chat_toolkit.utils.retry import RetryConfig

DEFAULT_PROVIDER = "ollama"


class ProviderTokenLimits(BaseModel):
    """Token limits of one model provider, all counted with 'estimate_tokens'."""

    model_config = ConfigDict(frozen=True)

    max_context_tokens: int
    max_response_tokens: int
    reserved_tokens: int
    max_messages: int | None = None

    def validate_consistency(self) -> None:
        """Raise 'ConfigurationError' if the limits cannot be satisfied together."""
        values = {
            "max_context_tokens": self.max_context_tokens,
            "max_response_tokens": self.max_response_tokens,
            "reserved_tokens": self.reserved_tokens,
        }
        if self.max_messages is not None:
            values["max_messages"] = self.max_messages
        not_positive = [name for name, value in values.items() if value <= 0]
        if not_positive:
            raise ConfigurationError(f"Token limits must be positive: {', '.join(not_positive)}")
        if self.reserved_tokens + self.max_response_tokens > self.max_context_tokens:
            raise ConfigurationError(
                f"reserved_tokens ({self.reserved_tokens}) + max_response_tokens ({self.max_response_tokens}) "
                f"exceed max_context_tokens ({self.max_context_tokens})"
            )


PROVIDER_TOKEN_LIMITS: dict[str, ProviderTokenLimits] = {
    "ollama": ProviderTokenLimits(
        max_context_tokens=4096,
        max_response_tokens=2048,
        reserved_tokens=200,
        max_messages=50,
    ),
    "embedded-ollama": ProviderTokenLimits(
        max_context_tokens=4096,
        max_response_tokens=2048,
        reserved_tokens=200,
        max_messages=50,
    ),
}


def get_provider_token_limits(provider: str | None) -> ProviderTokenLimits:
    key = (provider or "").strip().lower()
    return PROVIDER_TOKEN_LIMITS.get(key, PROVIDER_TOKEN_LIMITS[DEFAULT_PROVIDER])


class Settings(BaseSettings):
    default_model: str = Field(default="llama3.2:3b")
    ollama_host: str = Field(default="http://localhost:11434")
    preserve_recent_messages: int = Field(default=5, ge=1)

    document_timeout: float | None = Field(default=15.0)
    history_timeout: float | None = Field(default=10.0)
    model_timeout: float | None = Field(default=120.0)
    persistence_timeout: float | None = Field(default=10.0)

    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1)
    retry_max_delay: float = Field(default=10.0, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="LOCAL_CHAT_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def retry(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            backoff_multiplier=self.retry_backoff_multiplier,
            max_delay=self.retry_max_delay,
        )
