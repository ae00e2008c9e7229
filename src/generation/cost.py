"""Estimated USD cost of one query run."""

from __future__ import annotations

from .config import PricingConfig


def estimate_cost(
    embedding_tokens: int,
    prompt_tokens: int,
    completion_tokens: int,
    pricing: PricingConfig,
) -> float:
    """Token counts times per-1K prices, summed."""
    return (
        (embedding_tokens / 1000) * pricing.embedding_per_1k
        + (prompt_tokens / 1000) * pricing.prompt_per_1k
        + (completion_tokens / 1000) * pricing.completion_per_1k
    )
