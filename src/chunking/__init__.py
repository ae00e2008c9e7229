"""Chunking utilities for splitting extracted page text into retrieval units."""

from .chunker import (
    Chunk,
    ChunkEngine,
    ChunkStats,
    ChunkStrategy,
    PageText,
    find_page_number,
    jaccard_similarity,
    summarize_chunks,
)

__all__ = [
    "Chunk",
    "ChunkEngine",
    "ChunkStats",
    "ChunkStrategy",
    "PageText",
    "find_page_number",
    "jaccard_similarity",
    "summarize_chunks",
]
