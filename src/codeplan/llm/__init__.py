"""LLM provider abstraction layer."""

from codeplan.llm.base import EmbeddingProvider, LLMProvider, LLMResponse, Message
from codeplan.llm.factory import create_embedder, create_provider

__all__ = [
    "EmbeddingProvider",
    "LLMProvider",
    "LLMResponse",
    "Message",
    "create_embedder",
    "create_provider",
]
