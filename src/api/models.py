"""
Request and response models for the RAG API.

JSON bodies use camelCase keys; snake_case field names are accepted too.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.chunking import ChunkStrategy
from src.pipeline.models import QueryRequest, SearchMode
from src.rag.query_transformer import QueryStrategy


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class QueryBody(CamelModel):
    """Request body for POST /api/query."""

    query_text: str = Field(..., min_length=1, description="User question")
    search_mode: Optional[SearchMode] = None
    query_strategy: Optional[QueryStrategy] = None
    reranker_enabled: Optional[bool] = None
    temperature: Optional[float] = Field(None, ge=0, le=2)
    retrieval_top_k: Optional[int] = Field(None, ge=1, le=100)
    reranker_top_n: Optional[int] = Field(None, ge=1, le=50)
    document_ids: Optional[List[int]] = None
    prompt_template_id: Optional[int] = Field(None, ge=1)

    def to_request(self) -> QueryRequest:
        return QueryRequest(
            query_text=self.query_text,
            search_mode=self.search_mode,
            query_strategy=self.query_strategy,
            reranker_enabled=self.reranker_enabled,
            temperature=self.temperature,
            retrieval_top_k=self.retrieval_top_k,
            reranker_top_n=self.reranker_top_n,
            document_ids=self.document_ids,
            prompt_template_id=self.prompt_template_id,
        )


class PageIn(CamelModel):
    page_number: int = Field(..., ge=1)
    text: str = ""


class ChunkParams(CamelModel):
    chunk_strategy: Optional[ChunkStrategy] = None
    chunk_size: Optional[int] = Field(None, ge=1, le=8192)
    chunk_overlap: Optional[int] = Field(None, ge=0)


class DocumentCreate(ChunkParams):
    """Request body for POST /api/documents (pages already extracted)."""

    original_filename: str = Field(..., min_length=1, max_length=512)
    pages: List[PageIn] = Field(..., min_length=1)


class ChunkPreviewRequest(ChunkParams):
    """Request body for POST /api/chunks/preview."""

    pages: List[PageIn] = Field(..., min_length=1)


class ChunkOut(CamelModel):
    text: str
    chunk_index: int
    page_number: Optional[int] = None
    start_char: int
    end_char: int


class ChunkStatsOut(CamelModel):
    count: int
    avg_length: int
    min_length: int
    max_length: int
    total_chars: int


class ChunkPreviewResponse(CamelModel):
    chunks: List[ChunkOut] = Field(default_factory=list)
    stats: ChunkStatsOut


class DocumentOut(CamelModel):
    id: int
    original_filename: str
    page_count: Optional[int] = None
    chunk_count: int = 0
    chunk_strategy: str
    chunk_size: int
    chunk_overlap: int
    status: str
    error_message: Optional[str] = None


class DocumentIndexResponse(CamelModel):
    document: DocumentOut
    chunks: List[ChunkOut] = Field(default_factory=list)


class SearchRequest(CamelModel):
    """Request body for POST /api/search."""

    query: str = Field(..., min_length=1)
    top_k: int = Field(5, ge=1, le=100)


class SearchHit(CamelModel):
    document_id: int
    chunk_index: int
    page_number: Optional[int] = None
    text: str
    score: float


class SearchResponse(CamelModel):
    query: str
    results: List[SearchHit] = Field(default_factory=list)


class HealthResponse(CamelModel):
    """Response for GET /api/health."""

    status: str = "ok"
    indexed_documents: int = 0
    indexed_chunks: int = 0
    avg_chunk_length: float = 0.0


class QueryLogOut(CamelModel):
    id: int
    query_text: str
    answer_text: Optional[str] = None
    query_strategy: str
    search_mode: str
    reranker_enabled: bool
    temperature: float
    retrieval_top_k: int
    reranker_top_n: int
    llm_model: str
    prompt_template_id: Optional[int] = None
    document_ids: Optional[List[int]] = None
    transformed_queries: Optional[List[str]] = None
    transformation_ms: Optional[int] = None
    query_embedding_ms: Optional[int] = None
    retrieval_ms: Optional[int] = None
    reranking_ms: Optional[int] = None
    generation_ms: Optional[int] = None
    total_ms: Optional[int] = None
    embedding_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    estimated_cost_usd: float = 0.0
    retrieved_chunks: Optional[List[Dict[str, Any]]] = None
    created_at: Optional[dt.datetime] = None
