"""
Query pipeline: transformation -> embedding -> retrieval (vector / BM25 / hybrid)
-> reranking -> prompt assembly -> streamed generation -> cost -> query log.

Each run is driven by `QueryPipeline.execute`, an async generator of
PipelineEvent. Any failure becomes a single terminal error event; cancellation
of the consuming task is not intercepted and stops the run where it is.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Protocol, Sequence, Tuple

from src.common.errors import CollaboratorError, NotFoundError, PipelineError
from src.generation.config import PricingConfig
from src.generation.context_builder import build_context, render_prompt
from src.generation.cost import estimate_cost
from src.llm.client import ChatStream, GenerationResult
from src.rag.bm25 import BM25Index, BM25SearchResult
from src.rag.config import RAGConfig
from src.rag.dense import VectorSearchResult, VectorStore
from src.rag.embeddings import EmbeddingProvider
from src.rag.query_transformer import QueryTransformer
from src.rag.reranker import Reranker
from src.rag.retriever import ChunkSource, RetrievedChunk
from src.rag.rrf_merger import reciprocal_rank_fusion
from src.rag.utils import chunk_key

from .events import PipelineEvent
from .models import (
    PipelineSettings,
    PromptTemplate,
    QueryLogRecord,
    QueryRequest,
    SearchMode,
    Timings,
    resolve_settings,
)

logger = logging.getLogger(__name__)


class ChatModel(Protocol):
    model_name: str

    async def generate(
        self, system_prompt: str, user_message: str, temperature: float
    ) -> GenerationResult: ...

    async def stream(
        self, system_prompt: str, user_message: str, temperature: float
    ) -> ChatStream: ...


class PromptTemplateStore(Protocol):
    async def get(self, template_id: int) -> Optional[PromptTemplate]: ...

    async def get_default(self) -> Optional[PromptTemplate]: ...


class QueryLogSink(Protocol):
    async def save(self, record: QueryLogRecord) -> int: ...


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


@dataclass
class _Retrieval:
    """Intermediate state of one run up to the metadata event."""

    settings: PipelineSettings
    search_queries: List[str] = field(default_factory=list)
    chunks: List[RetrievedChunk] = field(default_factory=list)
    timings: Timings = field(default_factory=Timings)
    embedding_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0


class QueryPipeline:
    """Drives one query end-to-end; holds no per-query state between runs."""

    def __init__(
        self,
        config: RAGConfig,
        llm: ChatModel,
        embedder: EmbeddingProvider,
        vector_store: VectorStore,
        bm25_index: BM25Index,
        templates: PromptTemplateStore,
        log_sink: QueryLogSink,
        reranker: Optional[Reranker] = None,
        pricing: Optional[PricingConfig] = None,
        transformer: Optional[QueryTransformer] = None,
    ):
        self.config = config
        self.llm = llm
        self.embedder = embedder
        self.vector_store = vector_store
        self.bm25_index = bm25_index
        self.templates = templates
        self.log_sink = log_sink
        self.reranker = reranker
        self.pricing = pricing or PricingConfig()
        self.transformer = transformer or QueryTransformer(llm)

    # ------------------------------------------------------------------ setup

    async def preflight(self, request: QueryRequest) -> Tuple[PipelineSettings, PromptTemplate]:
        """
        Resolve settings and load the prompt template.

        Raises ValidationError or NotFoundError; the API calls this before it
        commits to a streaming response.
        """
        settings = resolve_settings(request, self.config, self.llm.model_name)
        template = await self._load_template(settings.prompt_template_id)
        return settings, template

    async def _load_template(self, template_id: Optional[int]) -> PromptTemplate:
        if template_id:
            template = await self.templates.get(template_id)
            if template is None:
                raise NotFoundError(f"Prompt template with ID {template_id} not found")
            return template
        template = await self.templates.get_default()
        if template is None:
            raise NotFoundError("No default prompt template found")
        return template

    # -------------------------------------------------------------- execution

    async def execute(self, request: QueryRequest) -> AsyncIterator[PipelineEvent]:
        """Run one query, yielding metadata, token* and then done or error."""
        total_start = time.perf_counter()
        try:
            settings, template = await self.preflight(request)
            state = await self._retrieve_stage(request, settings)

            yield PipelineEvent.metadata(
                timings=state.timings.retrieval_payload(),
                retrieved_chunks=[c.to_payload() for c in state.chunks],
                settings=settings.to_payload(),
                transformed_queries=state.search_queries,
            )

            context = build_context(state.chunks)
            system_prompt = render_prompt(template.system_prompt, context, request.query_text)

            gen_start = time.perf_counter()
            answer_parts: List[str] = []
            stream = await self.llm.stream(system_prompt, request.query_text, settings.temperature)
            async with contextlib.aclosing(stream):
                async for token in stream:
                    answer_parts.append(token)
                    yield PipelineEvent.token(token)
            state.timings.generation_ms = _elapsed_ms(gen_start)
            answer_text = "".join(answer_parts)

            prompt_tokens = state.prompt_tokens + stream.usage.prompt_tokens
            completion_tokens = state.completion_tokens + stream.usage.completion_tokens
            cost = estimate_cost(
                state.embedding_tokens, prompt_tokens, completion_tokens, self.pricing
            )
            state.timings.total_ms = _elapsed_ms(total_start)

            log_id = await self.log_sink.save(
                QueryLogRecord(
                    query_text=request.query_text,
                    answer_text=answer_text,
                    settings=settings,
                    transformed_queries=state.search_queries,
                    timings=state.timings,
                    embedding_tokens=state.embedding_tokens,
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    estimated_cost_usd=cost,
                    retrieved_chunks=[c.to_payload() for c in state.chunks],
                )
            )
            logger.info(
                "Query %s finished in %sms (%s chunks, $%.6f)",
                log_id,
                state.timings.total_ms,
                len(state.chunks),
                cost,
            )
            yield PipelineEvent.done(answer_text, log_id, cost)
        except Exception as e:
            logger.exception("Query pipeline error: %s", e)
            yield PipelineEvent.error(str(e) or e.__class__.__name__)

    async def execute_and_return(self, request: QueryRequest) -> Dict[str, object]:
        """
        Run the pipeline to completion and return the done payload.

        Raises PipelineError carrying the message of an error event.
        """
        async for event in self.execute(request):
            if event.type == "done":
                return event.data
            if event.type == "error":
                raise PipelineError(event.data["message"])
        raise PipelineError("Pipeline finished without a terminal event")

    async def _retrieve_stage(self, request: QueryRequest, settings: PipelineSettings) -> _Retrieval:
        state = _Retrieval(settings=settings)

        start = time.perf_counter()
        transformation = await self.transformer.transform(
            request.query_text, settings.query_strategy, settings.temperature
        )
        state.timings.transformation_ms = _elapsed_ms(start)
        state.search_queries = transformation.search_queries
        state.prompt_tokens = transformation.prompt_tokens
        state.completion_tokens = transformation.completion_tokens

        start = time.perf_counter()
        vectors: List[List[float]] = []
        if settings.search_mode != SearchMode.BM25:
            for q in state.search_queries:
                embedded = await self.embedder.embed([q])
                vectors.extend(embedded.vectors)
                state.embedding_tokens += embedded.total_tokens
        state.timings.embedding_ms = _elapsed_ms(start)

        start = time.perf_counter()
        retrieved = await self._retrieve(settings, state.search_queries, vectors)
        state.timings.retrieval_ms = _elapsed_ms(start)

        start = time.perf_counter()
        state.chunks = await self._rerank(request.query_text, retrieved, settings)
        state.timings.reranking_ms = _elapsed_ms(start)
        return state

    # -------------------------------------------------------------- retrieval

    async def _retrieve(
        self,
        settings: PipelineSettings,
        queries: Sequence[str],
        vectors: Sequence[Sequence[float]],
    ) -> List[RetrievedChunk]:
        if settings.search_mode == SearchMode.VECTOR:
            results = await self._search_vector(vectors, settings)
            return [
                RetrievedChunk(
                    document_id=r.document_id,
                    chunk_index=r.chunk_index,
                    page_number=r.page_number,
                    text=r.text,
                    chunk_strategy=r.chunk_strategy,
                    vector_rank=rank,
                    vector_score=r.score,
                    source=ChunkSource.VECTOR,
                )
                for rank, r in enumerate(results, 1)
            ]

        if settings.search_mode == SearchMode.BM25:
            results = await asyncio.to_thread(self._search_bm25, queries, settings)
            return [
                RetrievedChunk(
                    document_id=r.document_id,
                    chunk_index=r.chunk_index,
                    page_number=r.page_number,
                    text=r.text,
                    chunk_strategy=r.chunk_strategy,
                    bm25_rank=rank,
                    bm25_score=r.score,
                    source=ChunkSource.BM25,
                )
                for rank, r in enumerate(results, 1)
            ]

        vector_results, bm25_results = await asyncio.gather(
            self._search_vector(vectors, settings),
            asyncio.to_thread(self._search_bm25, queries, settings),
        )
        return reciprocal_rank_fusion(
            vector_results,
            bm25_results,
            vector_weight=self.config.vector_weight,
            k=self.config.rrf_k,
        )

    async def _search_vector(
        self, vectors: Sequence[Sequence[float]], settings: PipelineSettings
    ) -> List[VectorSearchResult]:
        top_k = settings.retrieval_top_k
        doc_ids = settings.document_ids
        if not vectors:
            return []
        if len(vectors) == 1:
            return await self.vector_store.search(vectors[0], top_k, doc_ids)

        per_query = await asyncio.gather(
            *(self.vector_store.search(v, top_k, doc_ids) for v in vectors)
        )
        merged: Dict[str, VectorSearchResult] = {}
        for results in per_query:
            for r in results:
                merged.setdefault(chunk_key(r.document_id, r.chunk_index), r)
        ranked = sorted(merged.values(), key=lambda r: r.score, reverse=True)
        return ranked[:top_k]

    def _search_bm25(
        self, queries: Sequence[str], settings: PipelineSettings
    ) -> List[BM25SearchResult]:
        top_k = settings.retrieval_top_k
        allowed = set(settings.document_ids) if settings.document_ids else None
        # With a document filter, rank the whole index so filtering cannot starve top_k.
        limit = len(self.bm25_index) if allowed is not None else top_k

        merged: Dict[str, BM25SearchResult] = {}
        for q in queries:
            for r in self.bm25_index.search(q, limit):
                merged.setdefault(chunk_key(r.document_id, r.chunk_index), r)

        results = list(merged.values())
        if allowed is not None:
            results = [r for r in results if r.document_id in allowed]
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:top_k]

    # -------------------------------------------------------------- reranking

    async def _rerank(
        self, query: str, chunks: List[RetrievedChunk], settings: PipelineSettings
    ) -> List[RetrievedChunk]:
        top_n = settings.reranker_top_n
        if not settings.reranker_enabled or not chunks:
            return chunks[:top_n]
        if self.reranker is None:
            raise CollaboratorError("reranker", "reranking requested but no reranker is configured")

        ranked = await self.reranker.rerank(query, [c.text for c in chunks], top_n)
        final: List[RetrievedChunk] = []
        for r in ranked[:top_n]:
            chunk = chunks[r.index]
            chunk.reranker_score = r.relevance_score
            final.append(chunk)
        return final
