"""Anthropic Claude reasoning-service provider."""

from __future__ import annotations

from typing import Any

from codeplan.exceptions import ExternalServiceError, ProviderNotAvailableError, RateLimitError
from codeplan.llm.base import LLMProvider, LLMResponse, Message


class AnthropicProvider(LLMProvider):
    """Provider for Anthropic's Claude models.

    SDK errors are translated at this boundary: ``anthropic.RateLimitError``
    becomes ``RateLimitError`` so the executor can back off, and every other
    API error becomes ``ExternalServiceError``.
    """

    def __init__(
        self,
        model: str = "claude-sonnet-4-5-20250929",
        api_key: str | None = None,
        base_url: str | None = None,
    ) -> None:
        super().__init__(model, api_key, base_url)
        self._client = None

    @property
    def client(self):
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError:
                raise ProviderNotAvailableError("anthropic", "anthropic")

            options: dict[str, Any] = {}
            if self.api_key:
                options["api_key"] = self.api_key
            if self.base_url:
                options["base_url"] = self.base_url
            self._client = AsyncAnthropic(**options)
        return self._client

    def _format_messages(self, messages: list[Message]) -> tuple[str, list[dict]]:
        """Split out the system prompt; Anthropic takes it as a separate field."""
        system_parts = [m.content for m in messages if m.role == "system"]
        turns = [{"role": m.role, "content": m.content} for m in messages if m.role != "system"]
        return "\n\n".join(system_parts), turns

    async def complete(
        self,
        messages: list[Message],
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        import anthropic

        system, turns = self._format_messages(messages)
        request: dict[str, Any] = {
            "model": self.model,
            "messages": turns,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system:
            request["system"] = system

        try:
            response = await self.client.messages.create(**request)
        except anthropic.RateLimitError as e:
            raise RateLimitError(f"Anthropic rate limit: {e}") from e
        except anthropic.APIError as e:
            raise ExternalServiceError(f"Anthropic API error: {e}") from e

        text = "".join(block.text for block in response.content if block.type == "text")
        return LLMResponse(
            content=text,
            finish_reason=response.stop_reason or "",
            usage={
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
            },
        )
