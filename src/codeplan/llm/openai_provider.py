"""OpenAI (and OpenAI-compatible) reasoning and embedding provider."""

from __future__ import annotations

from typing import Any

from codeplan.exceptions import ExternalServiceError, ProviderNotAvailableError, RateLimitError
from codeplan.llm.base import EmbeddingProvider, LLMProvider, LLMResponse, Message


class OpenAIProvider(LLMProvider, EmbeddingProvider):
    """Provider for OpenAI and OpenAI-compatible APIs (Ollama, vLLM, etc.)."""

    def __init__(
        self,
        model: str = "gpt-4o",
        api_key: str | None = None,
        base_url: str | None = None,
        embedding_model: str = "text-embedding-3-small",
    ) -> None:
        super().__init__(model, api_key, base_url)
        self.embedding_model = embedding_model
        self._client = None

    @property
    def client(self):
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ProviderNotAvailableError("openai", "openai")

            options: dict[str, Any] = {}
            if self.api_key:
                options["api_key"] = self.api_key
            if self.base_url:
                options["base_url"] = self.base_url
            self._client = AsyncOpenAI(**options)
        return self._client

    async def complete(
        self,
        messages: list[Message],
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        response = await self._call(
            "chat",
            self.client.chat.completions.create,
            model=self.model,
            messages=[m.model_dump(include={"role", "content"}) for m in messages],
            temperature=temperature,
            max_tokens=max_tokens,
        )

        choice = response.choices[0]
        usage = response.usage
        return LLMResponse(
            content=choice.message.content or "",
            finish_reason=choice.finish_reason or "",
            usage={
                "prompt_tokens": usage.prompt_tokens if usage else 0,
                "completion_tokens": usage.completion_tokens if usage else 0,
            },
        )

    async def embed(self, text: str) -> list[float]:
        response = await self._call(
            "embedding",
            self.client.embeddings.create,
            model=self.embedding_model,
            input=text,
        )
        return list(response.data[0].embedding)

    async def _call(self, what: str, method, **request: Any):
        """Await an SDK call, translating its errors into codeplan's."""
        import openai

        try:
            return await method(**request)
        except openai.RateLimitError as e:
            raise RateLimitError(f"OpenAI {what} rate limit: {e}") from e
        except openai.OpenAIError as e:
            raise ExternalServiceError(f"OpenAI {what} error: {e}") from e
