"""
BM25 lexical index over the chunks of every ready document.

The index is process-wide state. Every mutation rebuilds the inverted index and
statistics from the full document set into a fresh snapshot and swaps the
reference, so a concurrent search always scores against one consistent snapshot.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from .utils import chunk_key, tokenize

logger = logging.getLogger(__name__)


class ChunkLike(Protocol):
    text: str
    chunk_index: int
    page_number: Optional[int]


@dataclass(frozen=True)
class IndexedChunk:
    document_id: int
    chunk_index: int
    text: str
    tokens: Tuple[str, ...]
    page_number: Optional[int] = None
    chunk_strategy: str = ""

    @property
    def length(self) -> int:
        return len(self.tokens)

    @property
    def key(self) -> str:
        return chunk_key(self.document_id, self.chunk_index)


@dataclass(frozen=True)
class IndexStats:
    total_chunks: int = 0
    avg_chunk_length: float = 0.0


@dataclass
class BM25SearchResult:
    document_id: int
    chunk_index: int
    score: float
    text: str
    page_number: Optional[int] = None
    chunk_strategy: str = ""


@dataclass(frozen=True)
class _Snapshot:
    documents: Mapping[int, Tuple[IndexedChunk, ...]] = field(default_factory=dict)
    # term -> chunk key -> term frequency
    inverted: Mapping[str, Mapping[str, int]] = field(default_factory=dict)
    stats: IndexStats = IndexStats()


def _build_snapshot(documents: Dict[int, Tuple[IndexedChunk, ...]]) -> _Snapshot:
    inverted: Dict[str, Dict[str, int]] = {}
    total_chunks = 0
    total_length = 0
    for chunks in documents.values():
        for chunk in chunks:
            total_chunks += 1
            total_length += chunk.length
            term_freqs: Dict[str, int] = {}
            for token in chunk.tokens:
                term_freqs[token] = term_freqs.get(token, 0) + 1
            for term, freq in term_freqs.items():
                inverted.setdefault(term, {})[chunk.key] = freq
    avg = total_length / total_chunks if total_chunks else 0.0
    return _Snapshot(
        documents=documents,
        inverted=inverted,
        stats=IndexStats(total_chunks=total_chunks, avg_chunk_length=avg),
    )


def _index_chunks(
    document_id: int, chunks: Iterable[ChunkLike], chunk_strategy: str
) -> Tuple[IndexedChunk, ...]:
    return tuple(
        IndexedChunk(
            document_id=document_id,
            chunk_index=c.chunk_index,
            text=c.text,
            tokens=tuple(tokenize(c.text)),
            page_number=getattr(c, "page_number", None),
            chunk_strategy=chunk_strategy,
        )
        for c in chunks
    )


class BM25Index:
    """In-memory BM25 index keyed by document id."""

    def __init__(self, k1: float = 1.2, b: float = 0.75):
        self.k1 = k1
        self.b = b
        self._write_lock = threading.Lock()
        self._snapshot = _build_snapshot({})

    @property
    def stats(self) -> IndexStats:
        return self._snapshot.stats

    @property
    def document_ids(self) -> List[int]:
        return list(self._snapshot.documents)

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._snapshot.documents

    def __len__(self) -> int:
        return self._snapshot.stats.total_chunks

    def add_document(
        self,
        document_id: int,
        chunks: Sequence[ChunkLike],
        chunk_strategy: str = "",
    ) -> None:
        """Index (or replace) one document's chunks and rebuild."""
        indexed = _index_chunks(document_id, chunks, chunk_strategy)
        with self._write_lock:
            documents = dict(self._snapshot.documents)
            documents[document_id] = indexed
            self._snapshot = _build_snapshot(documents)
        logger.info("BM25: added document %s (%s chunks)", document_id, len(indexed))

    def add_documents(
        self,
        batch: Mapping[int, Sequence[ChunkLike]],
        chunk_strategies: Optional[Mapping[int, str]] = None,
    ) -> None:
        """Index several documents with a single rebuild."""
        strategies = chunk_strategies or {}
        indexed = {
            doc_id: _index_chunks(doc_id, chunks, strategies.get(doc_id, ""))
            for doc_id, chunks in batch.items()
        }
        with self._write_lock:
            documents = dict(self._snapshot.documents)
            documents.update(indexed)
            self._snapshot = _build_snapshot(documents)
        stats = self._snapshot.stats
        logger.info(
            "BM25 index built: %s chunks across %s documents",
            stats.total_chunks,
            len(self._snapshot.documents),
        )

    def remove_document(self, document_id: int) -> None:
        """Drop a document and rebuild. Unknown ids are ignored."""
        with self._write_lock:
            if document_id not in self._snapshot.documents:
                return
            documents = dict(self._snapshot.documents)
            del documents[document_id]
            self._snapshot = _build_snapshot(documents)
        logger.info("BM25: removed document %s", document_id)

    def clear(self) -> None:
        with self._write_lock:
            self._snapshot = _build_snapshot({})

    def search(self, query: str, top_k: int = 20) -> List[BM25SearchResult]:
        """Top-k chunks by BM25 score; chunks scoring 0 are never returned."""
        query_tokens = tokenize(query)
        if not query_tokens or top_k <= 0:
            return []

        snapshot = self._snapshot
        results: List[BM25SearchResult] = []
        for document_id, chunks in snapshot.documents.items():
            for chunk in chunks:
                score = self._score_chunk(snapshot, chunk, query_tokens)
                if score > 0:
                    results.append(
                        BM25SearchResult(
                            document_id=document_id,
                            chunk_index=chunk.chunk_index,
                            score=score,
                            text=chunk.text,
                            page_number=chunk.page_number,
                            chunk_strategy=chunk.chunk_strategy,
                        )
                    )

        # Stable sort: equal scores keep document insertion order.
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:top_k]

    def _score_chunk(
        self, snapshot: _Snapshot, chunk: IndexedChunk, query_tokens: Sequence[str]
    ) -> float:
        score = 0.0
        avg_len = snapshot.stats.avg_chunk_length
        for term in query_tokens:
            postings = snapshot.inverted.get(term)
            if not postings:
                continue
            tf = postings.get(chunk.key, 0)
            if tf == 0:
                continue
            idf = self._idf(len(postings), snapshot.stats.total_chunks)
            norm = tf + self.k1 * (1 - self.b + self.b * (chunk.length / avg_len))
            score += idf * (tf * (self.k1 + 1)) / norm
        return score

    @staticmethod
    def _idf(df: int, total_chunks: int) -> float:
        return math.log(1 + (total_chunks - df + 0.5) / (df + 0.5))
