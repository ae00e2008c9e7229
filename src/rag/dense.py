"""
Dense vector store: cosine similarity over normalized chunk embeddings.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence

import numpy as np

from .bm25 import ChunkLike

logger = logging.getLogger(__name__)


@dataclass
class VectorSearchResult:
    document_id: int
    chunk_index: int
    text: str
    score: float
    page_number: Optional[int] = None
    chunk_strategy: str = ""


class VectorStore(Protocol):
    async def upsert(
        self,
        document_id: int,
        chunks: Sequence[ChunkLike],
        vectors: Sequence[Sequence[float]],
        chunk_strategy: str = "",
    ) -> None: ...

    async def delete_document(self, document_id: int) -> None: ...

    async def search(
        self,
        vector: Sequence[float],
        top_k: int,
        document_ids: Optional[Sequence[int]] = None,
    ) -> List[VectorSearchResult]: ...


@dataclass
class _DocumentVectors:
    chunks: List[ChunkLike]
    embeddings: np.ndarray  # shape: (n_chunks, dim), rows L2-normalized
    chunk_strategy: str


def _normalize(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=-1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


class InMemoryVectorStore:
    """Per-document embedding matrices held in process memory."""

    def __init__(self) -> None:
        self._documents: Dict[int, _DocumentVectors] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._documents

    async def upsert(
        self,
        document_id: int,
        chunks: Sequence[ChunkLike],
        vectors: Sequence[Sequence[float]],
        chunk_strategy: str = "",
    ) -> None:
        if len(chunks) != len(vectors):
            raise ValueError(
                f"Got {len(vectors)} vectors for {len(chunks)} chunks of document {document_id}"
            )
        if chunks:
            emb = _normalize(np.asarray(vectors, dtype=np.float32))
        else:
            emb = np.zeros((0, 0), dtype=np.float32)
        async with self._lock:
            self._documents[document_id] = _DocumentVectors(
                chunks=list(chunks), embeddings=emb, chunk_strategy=chunk_strategy
            )
        logger.info("Vector store: upserted document %s (%s chunks)", document_id, len(chunks))

    async def delete_document(self, document_id: int) -> None:
        async with self._lock:
            self._documents.pop(document_id, None)

    async def search(
        self,
        vector: Sequence[float],
        top_k: int,
        document_ids: Optional[Sequence[int]] = None,
    ) -> List[VectorSearchResult]:
        """Top-k chunks by cosine similarity, optionally restricted to some documents."""
        if top_k <= 0:
            return []
        q = _normalize(np.asarray(vector, dtype=np.float32))
        allowed = set(document_ids) if document_ids else None

        async with self._lock:
            docs = [
                (doc_id, entry)
                for doc_id, entry in self._documents.items()
                if entry.chunks and (allowed is None or doc_id in allowed)
            ]

        results: List[VectorSearchResult] = []
        for doc_id, entry in docs:
            sims = entry.embeddings @ q
            for chunk, sim in zip(entry.chunks, sims):
                results.append(
                    VectorSearchResult(
                        document_id=doc_id,
                        chunk_index=chunk.chunk_index,
                        text=chunk.text,
                        score=float(sim),
                        page_number=getattr(chunk, "page_number", None),
                        chunk_strategy=entry.chunk_strategy,
                    )
                )
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:top_k]
