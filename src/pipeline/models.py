"""
Data types for one query run: request overrides, resolved settings, timings and
the query log record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from src.common.errors import ValidationError
from src.rag.config import RAGConfig
from src.rag.query_transformer import QueryStrategy


class SearchMode(str, Enum):
    VECTOR = "vector"
    BM25 = "bm25"
    HYBRID = "hybrid"


@dataclass
class QueryRequest:
    """A question plus optional per-request overrides (None = configured default)."""

    query_text: str
    search_mode: Optional[SearchMode] = None
    query_strategy: Optional[QueryStrategy] = None
    reranker_enabled: Optional[bool] = None
    temperature: Optional[float] = None
    retrieval_top_k: Optional[int] = None
    reranker_top_n: Optional[int] = None
    document_ids: Optional[List[int]] = None
    prompt_template_id: Optional[int] = None


@dataclass(frozen=True)
class PipelineSettings:
    search_mode: SearchMode
    query_strategy: QueryStrategy
    reranker_enabled: bool
    temperature: float
    retrieval_top_k: int
    reranker_top_n: int
    document_ids: Optional[Tuple[int, ...]]
    prompt_template_id: Optional[int]
    llm_model: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "searchMode": self.search_mode.value,
            "queryStrategy": self.query_strategy.value,
            "rerankerEnabled": self.reranker_enabled,
            "temperature": self.temperature,
            "retrievalTopK": self.retrieval_top_k,
            "rerankerTopN": self.reranker_top_n,
            "documentIds": list(self.document_ids) if self.document_ids is not None else None,
            "promptTemplateId": self.prompt_template_id,
            "llmModel": self.llm_model,
        }


def _check_range(name: str, value: float, low: float, high: float) -> None:
    if not low <= value <= high:
        raise ValidationError(f"{name} must be between {low} and {high}, got {value}")


def resolve_settings(request: QueryRequest, config: RAGConfig, llm_model: str) -> PipelineSettings:
    """Merge request overrides over configured defaults and validate the result."""
    if not request.query_text or not request.query_text.strip():
        raise ValidationError("queryText must not be empty")

    try:
        search_mode = SearchMode(request.search_mode or config.search_mode)
        query_strategy = QueryStrategy(request.query_strategy or config.query_strategy)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    settings = PipelineSettings(
        search_mode=search_mode,
        query_strategy=query_strategy,
        reranker_enabled=(
            config.reranker_enabled if request.reranker_enabled is None else request.reranker_enabled
        ),
        temperature=config.temperature if request.temperature is None else request.temperature,
        retrieval_top_k=(
            config.retrieval_top_k if request.retrieval_top_k is None else request.retrieval_top_k
        ),
        reranker_top_n=(
            config.reranker_top_n if request.reranker_top_n is None else request.reranker_top_n
        ),
        document_ids=tuple(request.document_ids) if request.document_ids else None,
        prompt_template_id=request.prompt_template_id,
        llm_model=llm_model,
    )
    _check_range("temperature", settings.temperature, 0, 2)
    _check_range("retrievalTopK", settings.retrieval_top_k, 1, 100)
    _check_range("rerankerTopN", settings.reranker_top_n, 1, 50)
    return settings


@dataclass
class Timings:
    """Stage durations in whole milliseconds."""

    transformation_ms: int = 0
    embedding_ms: int = 0
    retrieval_ms: int = 0
    reranking_ms: int = 0
    generation_ms: int = 0
    total_ms: int = 0

    def retrieval_payload(self) -> Dict[str, int]:
        """The pre-generation timings reported in the metadata event."""
        return {
            "transformationMs": self.transformation_ms,
            "embeddingMs": self.embedding_ms,
            "retrievalMs": self.retrieval_ms,
            "rerankingMs": self.reranking_ms,
        }


@dataclass
class PromptTemplate:
    id: int
    name: str
    system_prompt: str
    is_default: bool = False
    description: Optional[str] = None


@dataclass
class QueryLogRecord:
    query_text: str
    answer_text: str
    settings: PipelineSettings
    transformed_queries: List[str]
    timings: Timings
    embedding_tokens: int
    prompt_tokens: int
    completion_tokens: int
    estimated_cost_usd: float
    retrieved_chunks: List[Dict[str, Any]] = field(default_factory=list)
