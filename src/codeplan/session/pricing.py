"""Token cost estimation for service calls."""

from __future__ import annotations

from collections.abc import Mapping

from codeplan.config import ModelRate


def calculate_cost(prompt_tokens: int, completion_tokens: int, rate: ModelRate | None) -> float:
    """Cost in USD of one call at `rate` (USD per 1M tokens). Unknown rate costs 0."""
    if rate is None:
        return 0.0
    return (
        (prompt_tokens / 1_000_000) * rate.input_per_1m
        + (completion_tokens / 1_000_000) * rate.output_per_1m
    )


def lookup_rate(pricing: Mapping[str, ModelRate], model: str) -> ModelRate | None:
    """Find the rate for `model`.

    Lookup order: exact model id, longest configured prefix (so
    ``claude-sonnet-4`` covers dated releases), then the ``*`` wildcard.
    """
    model = model.strip()
    direct = pricing.get(model)
    if direct is not None:
        return direct

    prefixes = [key for key in pricing if key != "*" and model.startswith(key)]
    if prefixes:
        return pricing[max(prefixes, key=len)]

    return pricing.get("*")
