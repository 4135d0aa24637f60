"""
Configuration management for openbot.

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["anthropic", "openai", "ollama", "openrouter"]


class LLMConfig(BaseSettings):
    """Configuration for a single upstream provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: ProviderName = "openai"
    model: str = "gpt-4o-mini"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "openbot"
    debug: bool = False
    log_level: str = "INFO"

    # Upstream providers
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openai_base_url: str = Field(default="", description="Override for OpenAI-compatible endpoints")
    anthropic_api_key: str = Field(default="", description="Anthropic API key")
    anthropic_base_url: str = Field(default="", description="Override for the Anthropic endpoint")
    ollama_base_url: str = Field(default="http://localhost:11434", description="Ollama server URL")
    ollama_api_key: str = Field(default="", description="Bearer token for hosted Ollama")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")

    default_provider: ProviderName = "openai"
    failover_providers: str = Field(
        default="",
        description="Comma-separated providers tried in order; empty means default_provider only",
    )
    default_model: str = Field(default="", description="Model for the default provider; empty picks its default")
    max_tokens: int = 4096
    temperature: float = 0.7

    # Agent loop
    max_iterations: int = Field(default=20, description="Max LLM/tool rounds per turn")
    concurrency: int = Field(default=3, description="Max turns processed at once")
    max_parallel_tools: int = Field(default=5, description="Max tool calls executed at once per round")
    history_limit: int = Field(default=50, description="Messages loaded from the session store per turn")
    stream_responses: bool = Field(default=False, description="Stream tokens to the outbound sink")
    system_prompt: str = Field(default="", description="Override for the base system prompt")
    allowed_tools: str = Field(default="", description="Comma-separated tools the model may use; empty allows all")
    denied_tools: str = Field(default="", description="Comma-separated tools the model may never use")

    # Rate limiting of upstream calls
    rate_limit_burst: int = Field(default=5, description="Token bucket size")
    rate_limit_per_minute: float = Field(default=30.0, description="Token bucket refill rate")

    # Context compaction
    compaction_max_tokens: int = Field(default=4096, description="Estimated-token budget before compaction")
    compaction_min_recent: int = Field(default=4, description="Recent messages never summarized")

    # HTTP
    http_timeout: float = Field(default=120.0, description="Per-call network timeout in seconds")
    max_retries: int = Field(default=3, description="Retries for transient upstream failures")

    @field_validator("failover_providers", mode="before")
    @classmethod
    def parse_failover_providers(cls, v: str) -> str:
        return v.strip().lower() if v else ""

    @field_validator("log_level", mode="before")
    @classmethod
    def parse_log_level(cls, v: str) -> str:
        return v.strip().upper() if v else "INFO"

    @property
    def allowed_tools_list(self) -> list[str]:
        return [t.strip() for t in self.allowed_tools.split(",") if t.strip()]

    @property
    def denied_tools_list(self) -> list[str]:
        return [t.strip() for t in self.denied_tools.split(",") if t.strip()]

    @property
    def failover_providers_list(self) -> list[str]:
        """Providers in failover order."""
        if not self.failover_providers:
            return [self.default_provider]
        return [p.strip() for p in self.failover_providers.split(",") if p.strip()]

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.default_provider

        api_key_map = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "ollama": self.ollama_api_key,
            "openrouter": self.openrouter_api_key,
        }

        model_map = {
            "anthropic": "claude-sonnet-4-20250514",
            "openai": "gpt-4o-mini",
            "ollama": "llama3.1:8b",
            "openrouter": "anthropic/claude-sonnet-4",
        }

        base_url_map = {
            "anthropic": self.anthropic_base_url or None,
            "openai": self.openai_base_url or None,
            "ollama": self.ollama_base_url or None,
            "openrouter": "https://openrouter.ai/api/v1",
        }

        model = model_map.get(provider, "")
        if provider == self.default_provider and self.default_model:
            model = self.default_model

        return LLMConfig(
            provider=provider,  # type: ignore
            model=model,
            api_key=api_key_map.get(provider, ""),
            base_url=base_url_map.get(provider),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
