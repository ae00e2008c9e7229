"""
Embedding providers: a local sentence-transformers model or the OpenAI embeddings API.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from openai import AsyncOpenAI, OpenAIError

from src.common.errors import CollaboratorError

from .config import RAGConfig

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_MODEL = "all-MiniLM-L6-v2"
DEFAULT_OPENAI_MODEL = "text-embedding-3-large"


@dataclass
class EmbeddingResult:
    vectors: List[List[float]] = field(default_factory=list)
    total_tokens: int = 0


class EmbeddingProvider(Protocol):
    async def embed(self, texts: Sequence[str]) -> EmbeddingResult: ...


class SentenceTransformerEmbedder:
    """Local embedding model; the model is loaded on first use."""

    def __init__(self, model_name: Optional[str] = None, batch_size: int = 64):
        self.model_name = model_name or DEFAULT_LOCAL_MODEL
        self.batch_size = batch_size
        self._model = None

    def _get_model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model %s", self.model_name)
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def _encode(self, texts: List[str]) -> EmbeddingResult:
        model = self._get_model()
        emb = model.encode(
            texts,
            batch_size=self.batch_size,
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=True,
        )
        tokens = sum(len(ids) for ids in model.tokenizer(texts)["input_ids"])
        return EmbeddingResult(vectors=emb.tolist(), total_tokens=tokens)

    async def embed(self, texts: Sequence[str]) -> EmbeddingResult:
        if not texts:
            return EmbeddingResult()
        try:
            return await asyncio.to_thread(self._encode, list(texts))
        except (OSError, RuntimeError) as e:
            raise CollaboratorError("embedding", str(e)) from e


class OpenAIEmbedder:
    """OpenAI embeddings API, called in batches."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model_name: Optional[str] = None,
        batch_size: int = 100,
    ):
        self.client = client
        self.model_name = model_name or DEFAULT_OPENAI_MODEL
        self.batch_size = batch_size

    async def embed(self, texts: Sequence[str]) -> EmbeddingResult:
        if not texts:
            return EmbeddingResult()

        result = EmbeddingResult()
        n_batches = (len(texts) + self.batch_size - 1) // self.batch_size
        for b, start in enumerate(range(0, len(texts), self.batch_size), 1):
            batch = list(texts[start : start + self.batch_size])
            logger.info("Embedding batch %s/%s (%s texts)", b, n_batches, len(batch))
            try:
                response = await self.client.embeddings.create(
                    model=self.model_name, input=batch
                )
            except OpenAIError as e:
                raise CollaboratorError("embedding", str(e)) from e
            items = sorted(response.data, key=lambda d: d.index)
            result.vectors.extend(item.embedding for item in items)
            if response.usage is not None:
                result.total_tokens += response.usage.total_tokens
        return result


def create_embedder(config: RAGConfig) -> EmbeddingProvider:
    """Build the embedding provider selected by EMBEDDING_PROVIDER."""
    if config.embedding_provider == "openai":
        client = AsyncOpenAI(
            api_key=os.getenv("OPENAI_API_KEY") or os.getenv("LLM_API_KEY"),
        )
        return OpenAIEmbedder(client, model_name=config.embedding_model)
    return SentenceTransformerEmbedder(model_name=config.embedding_model)
