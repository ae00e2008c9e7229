"""
Canonical per-chunk retrieval record shared by every retrieval mode.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .utils import chunk_key


class ChunkSource(str, Enum):
    VECTOR = "vector"
    BM25 = "bm25"
    BOTH = "both"


@dataclass
class RetrievedChunk:
    """A retrieved chunk; (document_id, chunk_index) is its identity."""

    document_id: int
    chunk_index: int
    text: str
    source: ChunkSource
    page_number: Optional[int] = None
    chunk_strategy: str = ""
    vector_rank: Optional[int] = None
    vector_score: Optional[float] = None
    bm25_rank: Optional[int] = None
    bm25_score: Optional[float] = None
    rrf_score: Optional[float] = None
    reranker_score: Optional[float] = None

    @property
    def key(self) -> str:
        return chunk_key(self.document_id, self.chunk_index)

    def to_payload(self) -> Dict[str, Any]:
        """camelCase representation used in events and query logs."""
        return {
            "documentId": self.document_id,
            "chunkIndex": self.chunk_index,
            "pageNumber": self.page_number,
            "text": self.text,
            "chunkStrategy": self.chunk_strategy,
            "vectorRank": self.vector_rank,
            "vectorScore": self.vector_score,
            "bm25Rank": self.bm25_rank,
            "bm25Score": self.bm25_score,
            "rrfScore": self.rrf_score,
            "rerankerScore": self.reranker_score,
            "source": self.source.value,
        }
