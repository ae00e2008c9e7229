"""
Second-stage rerankers: a local cross-encoder or the hosted Jina rerank API.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

import httpx

from src.common.errors import CollaboratorError

from .config import RAGConfig

logger = logging.getLogger(__name__)

DEFAULT_CROSS_ENCODER_MODEL = "cross-encoder/ms-marco-MiniLM-L-6-v2"
JINA_RERANK_URL = "https://api.jina.ai/v1/rerank"
JINA_MODEL = "jina-reranker-v2-base-multilingual"


@dataclass
class RerankResult:
    """`index` points into the documents list that was submitted."""

    index: int
    relevance_score: float


class Reranker(Protocol):
    async def rerank(
        self, query: str, documents: Sequence[str], top_n: int
    ) -> List[RerankResult]: ...


class CrossEncoderReranker:
    """Cross-encoder reranker for improving retrieval quality."""

    def __init__(self, model_name: Optional[str] = None):
        self.model_name = model_name or DEFAULT_CROSS_ENCODER_MODEL
        self._model = None

    def _get_model(self):
        if self._model is None:
            from sentence_transformers import CrossEncoder

            logger.info("Loading reranker model %s", self.model_name)
            self._model = CrossEncoder(self.model_name)
        return self._model

    def _score(self, query: str, documents: List[str]) -> List[float]:
        pairs = [(query, doc[:512].replace("\n", " ")) for doc in documents]
        scores = self._get_model().predict(pairs, batch_size=16)
        return [float(s) for s in scores]

    async def rerank(
        self, query: str, documents: Sequence[str], top_n: int
    ) -> List[RerankResult]:
        if not documents or top_n <= 0:
            return []
        try:
            scores = await asyncio.to_thread(self._score, query, list(documents))
        except (OSError, RuntimeError) as e:
            raise CollaboratorError("reranker", str(e)) from e
        ranked = sorted(
            (RerankResult(index=i, relevance_score=s) for i, s in enumerate(scores)),
            key=lambda r: r.relevance_score,
            reverse=True,
        )
        return ranked[:top_n]


class JinaReranker:
    """Hosted Jina reranker."""

    def __init__(
        self,
        api_key: Optional[str],
        model_name: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.api_key = api_key or ""
        self.model_name = model_name or JINA_MODEL
        self._client = client
        self.timeout = timeout

    async def rerank(
        self, query: str, documents: Sequence[str], top_n: int
    ) -> List[RerankResult]:
        if not self.api_key:
            raise CollaboratorError(
                "reranker", "JINA_API_KEY is not configured. Disable reranking or set the key."
            )
        if not documents:
            return []

        payload = {
            "model": self.model_name,
            "query": query,
            "documents": list(documents),
            "top_n": top_n,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if self._client is not None:
                response = await self._client.post(JINA_RERANK_URL, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(JINA_RERANK_URL, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise CollaboratorError("reranker", str(e)) from e

        if response.status_code >= 300:
            logger.error("Jina rerank failed (%s): %s", response.status_code, response.text)
            raise CollaboratorError("reranker", f"Jina reranker error: {response.status_code}")

        return [
            RerankResult(index=r["index"], relevance_score=float(r["relevance_score"]))
            for r in response.json().get("results", [])
        ]


def create_reranker(config: RAGConfig) -> Reranker:
    """Build the reranker selected by RERANKER_PROVIDER."""
    if config.reranker_provider == "jina":
        return JinaReranker(api_key=os.getenv("JINA_API_KEY"), model_name=config.reranker_model)
    return CrossEncoderReranker(model_name=config.reranker_model)
