"""
Configuration for RAG retrieval pipeline.

Values come from the environment (a `.env` file at the project root is loaded
first); every knob has a default so tests and local runs need no configuration.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, TypeVar

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_ENV_FILE = Path(__file__).resolve().parents[2] / ".env"
if _ENV_FILE.exists():
    load_dotenv(_ENV_FILE)

T = TypeVar("T")


def _env(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError as e:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from e


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    if raw not in choices:
        logger.warning("%s=%r is not one of %s; using %r", name, raw, choices, default)
        return default
    return raw


@dataclass
class RAGConfig:
    """Configuration for RAG retrieval."""

    # BM25
    bm25_k1: float = 1.2
    bm25_b: float = 0.75
    # Reciprocal rank fusion
    rrf_k: int = 60
    vector_weight: float = 0.7
    # Query defaults
    retrieval_top_k: int = 20
    reranker_top_n: int = 5
    reranker_enabled: bool = True
    temperature: float = 0.1
    search_mode: str = "hybrid"
    query_strategy: str = "direct"
    # Chunking defaults
    chunk_size: int = 512
    chunk_overlap: int = 50
    chunk_strategy: str = "recursive"
    semantic_similarity_threshold: float = 0.85
    # Collaborators
    embedding_provider: str = "sentence-transformers"
    embedding_model: Optional[str] = None
    reranker_provider: str = "cross-encoder"
    reranker_model: Optional[str] = None

    @classmethod
    def from_env(cls) -> "RAGConfig":
        """Build a config from environment variables."""
        return cls(
            bm25_k1=_env("BM25_K1", 1.2, float),
            bm25_b=_env("BM25_B", 0.75, float),
            rrf_k=_env("RRF_K", 60, int),
            vector_weight=_env("DEFAULT_VECTOR_WEIGHT", 0.7, float),
            retrieval_top_k=_env("DEFAULT_RETRIEVAL_TOP_K", 20, int),
            reranker_top_n=_env("DEFAULT_RERANKER_TOP_N", 5, int),
            reranker_enabled=_env_bool("RERANKER_ENABLED", True),
            temperature=_env("DEFAULT_TEMPERATURE", 0.1, float),
            search_mode=_env_choice("DEFAULT_SEARCH_MODE", "hybrid", ("vector", "bm25", "hybrid")),
            query_strategy=_env_choice(
                "DEFAULT_QUERY_STRATEGY",
                "direct",
                ("direct", "hyde", "multi_query", "step_back"),
            ),
            chunk_size=_env("DEFAULT_CHUNK_SIZE", 512, int),
            chunk_overlap=_env("DEFAULT_CHUNK_OVERLAP", 50, int),
            chunk_strategy=_env_choice(
                "DEFAULT_CHUNK_STRATEGY", "recursive", ("fixed", "recursive", "semantic")
            ),
            semantic_similarity_threshold=_env("SEMANTIC_SIMILARITY_THRESHOLD", 0.85, float),
            embedding_provider=_env_choice(
                "EMBEDDING_PROVIDER", "sentence-transformers", ("sentence-transformers", "openai")
            ),
            embedding_model=os.getenv("EMBEDDING_MODEL") or None,
            reranker_provider=_env_choice(
                "RERANKER_PROVIDER", "cross-encoder", ("cross-encoder", "jina")
            ),
            reranker_model=os.getenv("RERANKER_MODEL") or None,
        )
