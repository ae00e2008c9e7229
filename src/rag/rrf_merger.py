"""
Weighted Reciprocal Rank Fusion (RRF) of vector and BM25 result lists.

Raw vector and BM25 scores are never compared; only rank positions are fused.
"""

from __future__ import annotations

from typing import Dict, List, Sequence

from .bm25 import BM25SearchResult
from .dense import VectorSearchResult
from .retriever import ChunkSource, RetrievedChunk
from .utils import chunk_key

DEFAULT_RRF_K = 60
DEFAULT_VECTOR_WEIGHT = 0.7


def reciprocal_rank_fusion(
    vector_results: Sequence[VectorSearchResult],
    bm25_results: Sequence[BM25SearchResult],
    vector_weight: float = DEFAULT_VECTOR_WEIGHT,
    k: int = DEFAULT_RRF_K,
) -> List[RetrievedChunk]:
    """
    Merge two ranked lists into one ranked, de-duplicated list.

    Args:
        vector_results: Vector hits, best first.
        bm25_results: BM25 hits, best first.
        vector_weight: Share of the fused score given to the vector list, in [0, 1].
        k: Rank-discounting constant in weight / (k + rank).

    Returns:
        RetrievedChunk records sorted by rrf_score descending. Ties keep the order
        in which chunks were first seen (vector list first).
    """
    if not 0.0 <= vector_weight <= 1.0:
        raise ValueError(f"vector_weight must be in [0, 1], got {vector_weight}")
    bm25_weight = 1.0 - vector_weight

    fused: Dict[str, RetrievedChunk] = {}

    for rank, r in enumerate(vector_results, 1):
        key = chunk_key(r.document_id, r.chunk_index)
        if key in fused:
            continue
        fused[key] = RetrievedChunk(
            document_id=r.document_id,
            chunk_index=r.chunk_index,
            page_number=r.page_number,
            text=r.text,
            chunk_strategy=r.chunk_strategy,
            vector_rank=rank,
            vector_score=r.score,
            rrf_score=vector_weight / (k + rank),
            source=ChunkSource.VECTOR,
        )

    for rank, r in enumerate(bm25_results, 1):
        key = chunk_key(r.document_id, r.chunk_index)
        existing = fused.get(key)
        if existing is not None:
            if existing.bm25_rank is not None:
                continue
            existing.bm25_rank = rank
            existing.bm25_score = r.score
            existing.rrf_score = (existing.rrf_score or 0.0) + bm25_weight / (k + rank)
            existing.source = ChunkSource.BOTH
            if existing.page_number is None:
                existing.page_number = r.page_number
        else:
            fused[key] = RetrievedChunk(
                document_id=r.document_id,
                chunk_index=r.chunk_index,
                page_number=r.page_number,
                text=r.text,
                chunk_strategy=r.chunk_strategy,
                bm25_rank=rank,
                bm25_score=r.score,
                rrf_score=bm25_weight / (k + rank),
                source=ChunkSource.BM25,
            )

    return sorted(fused.values(), key=lambda c: c.rrf_score or 0.0, reverse=True)
