"""Configuration for answer generation and cost accounting."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

_ENV_FILE = Path(__file__).resolve().parents[2] / ".env"
if _ENV_FILE.exists():
    load_dotenv(_ENV_FILE)


@dataclass
class GenerationConfig:
    """Settings for the chat-completion client."""

    model: str = "gpt-4o"
    max_tokens: int = 4096
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout_seconds: float = 60.0

    @classmethod
    def from_env(cls) -> "GenerationConfig":
        return cls(
            model=os.getenv("LLM_MODEL") or "gpt-4o",
            max_tokens=int(os.getenv("LLM_MAX_TOKENS") or 4096),
            base_url=os.getenv("LLM_BASE_URL") or None,
            api_key=os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY") or None,
            timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS") or 60),
        )


@dataclass
class PricingConfig:
    """USD prices per 1K tokens."""

    embedding_per_1k: float = 0.00013
    prompt_per_1k: float = 0.005
    completion_per_1k: float = 0.015

    @classmethod
    def from_env(cls) -> "PricingConfig":
        return cls(
            embedding_per_1k=float(os.getenv("OPENAI_EMBEDDING_PRICE_PER_1K") or 0.00013),
            prompt_per_1k=float(os.getenv("OPENAI_PROMPT_PRICE_PER_1K") or 0.005),
            completion_per_1k=float(os.getenv("OPENAI_COMPLETION_PRICE_PER_1K") or 0.015),
        )
