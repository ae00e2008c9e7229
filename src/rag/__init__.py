"""
Retrieval layer: lexical (BM25) and dense indexes, rank fusion, query
transformation and reranking.
"""

from .bm25 import BM25Index, BM25SearchResult, IndexStats
from .config import RAGConfig
from .dense import InMemoryVectorStore, VectorSearchResult, VectorStore
from .embeddings import (
    EmbeddingProvider,
    EmbeddingResult,
    OpenAIEmbedder,
    SentenceTransformerEmbedder,
    create_embedder,
)
from .query_transformer import QueryStrategy, QueryTransformer, TransformationResult
from .reranker import CrossEncoderReranker, JinaReranker, Reranker, RerankResult, create_reranker
from .retriever import ChunkSource, RetrievedChunk
from .rrf_merger import reciprocal_rank_fusion
from .utils import chunk_key, tokenize

__all__ = [
    "BM25Index",
    "BM25SearchResult",
    "ChunkSource",
    "CrossEncoderReranker",
    "EmbeddingProvider",
    "EmbeddingResult",
    "IndexStats",
    "InMemoryVectorStore",
    "JinaReranker",
    "OpenAIEmbedder",
    "QueryStrategy",
    "QueryTransformer",
    "RAGConfig",
    "Reranker",
    "RerankResult",
    "RetrievedChunk",
    "SentenceTransformerEmbedder",
    "TransformationResult",
    "VectorSearchResult",
    "VectorStore",
    "chunk_key",
    "create_embedder",
    "create_reranker",
    "reciprocal_rank_fusion",
    "tokenize",
]
