"""
LLM factory for creating provider instances.

Supports: OpenAI, Anthropic, Ollama, OpenRouter (OpenAI-compatible).
"""

import httpx
import structlog

from ..config import LLMConfig, Settings, get_settings
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .failover import FailoverChain
from .ollama import OllamaLLM
from .openai import OpenAILLM

logger = structlog.get_logger()


def create_llm(
    config: LLMConfig,
    http_client: httpx.AsyncClient | None = None,
    max_retries: int = 3,
) -> BaseLLM:
    """Create one upstream client.

    Provider routing:
    - anthropic -> AnthropicLLM
    - openai -> OpenAILLM
    - ollama -> OllamaLLM
    - openrouter -> OpenAILLM (OpenAI-compatible endpoint)
    """
    common = dict(
        max_tokens=config.max_tokens,
        temperature=config.temperature,
        http_client=http_client,
        max_retries=max_retries,
    )

    if config.provider == "anthropic":
        return AnthropicLLM(config.api_key, config.model, config.base_url, **common)
    elif config.provider == "openai":
        return OpenAILLM(config.api_key, config.model, config.base_url, **common)
    elif config.provider == "ollama":
        return OllamaLLM(config.api_key, config.model, config.base_url, **common)
    elif config.provider == "openrouter":
        return OpenAILLM(
            config.api_key,
            config.model,
            config.base_url or "https://openrouter.ai/api/v1",
            **common,
        )
    else:
        raise ValueError(f"Unknown LLM provider: {config.provider}")


def create_providers(
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> dict[str, BaseLLM]:
    """Create one client per provider in `settings.failover_providers`.

    Keys are the configured provider names, in failover order. Pass one
    shared `http_client` so every client reuses the same pool.
    """
    settings = settings or get_settings()

    clients: dict[str, BaseLLM] = {}
    for provider in settings.failover_providers_list:
        if provider in clients:
            continue
        try:
            config = settings.get_llm_config(provider)
            clients[provider] = create_llm(config, http_client, settings.max_retries)
        except ValueError as e:
            logger.warning("Skipping invalid provider", provider=provider, error=str(e))

    if not clients:
        raise ValueError("No usable providers configured")
    return clients


def create_failover_chain(
    settings: Settings | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FailoverChain:
    """Build the failover chain from `settings.failover_providers`."""
    clients = list(create_providers(settings, http_client).values())
    logger.info("Failover chain created", providers=[c.name for c in clients])
    return FailoverChain(clients)
