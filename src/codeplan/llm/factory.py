"""Build reasoning and embedding services from configuration."""

from __future__ import annotations

from codeplan.config import LLMConfig
from codeplan.llm.base import EmbeddingProvider, LLMProvider

# "local" speaks the OpenAI wire protocol (Ollama, vLLM, LM Studio).
SUPPORTED_PROVIDERS = ("anthropic", "openai", "local")


def create_provider(config: LLMConfig) -> LLMProvider:
    """Create the reasoning-service provider named by ``config.provider``.

    Raises:
        ValueError: If the provider is unknown.
        ProviderNotAvailableError: On first use, if the provider's SDK is
            not installed.
    """
    name = config.provider.lower()
    if name not in SUPPORTED_PROVIDERS:
        raise ValueError(
            f"Unknown LLM provider: '{name}'. "
            f"Supported providers: {', '.join(SUPPORTED_PROVIDERS)}"
        )

    if name == "anthropic":
        from codeplan.llm.anthropic_provider import AnthropicProvider

        return AnthropicProvider(config.model, config.api_key, config.base_url)

    from codeplan.llm.openai_provider import OpenAIProvider

    return OpenAIProvider(config.model, config.api_key, config.base_url)


def create_embedder(config: LLMConfig) -> EmbeddingProvider | None:
    """Create the embedding service, or None when semantic ranking is off.

    Embeddings always go through the OpenAI-compatible client. Its key and
    base URL are shared with the reasoning service only when that service is
    OpenAI-compatible too.
    """
    if not config.embedding_model:
        return None

    from codeplan.llm.openai_provider import OpenAIProvider

    shared = config.provider.lower() in ("openai", "local")
    return OpenAIProvider(
        model=config.model,
        api_key=config.api_key if shared else None,
        base_url=config.base_url if shared else None,
        embedding_model=config.embedding_model,
    )
