"""
Tests for the query pipeline: event ordering, retrieval modes, reranking,
failure handling, cost accounting and query logging.
"""

from __future__ import annotations

import asyncio
import threading

import pytest

from src.common.errors import CollaboratorError, PipelineError, ValidationError
from src.generation import PricingConfig, estimate_cost
from src.pipeline import QueryRequest, SearchMode, resolve_settings
from src.rag import QueryStrategy, RAGConfig

QUESTION = "What is a deadlock?"


async def collect(pipeline, request):
    return [event async for event in pipeline.execute(request)]


@pytest.mark.anyio
async def test_hybrid_query_end_to_end(make_pipeline, llm, log_sink):
    events = await collect(make_pipeline(), QueryRequest(QUESTION, reranker_top_n=3))

    assert [e.type for e in events] == ["metadata", "token", "token", "token", "done"]
    metadata, done = events[0].data, events[-1].data

    chunks = metadata["retrievedChunks"]
    assert len(chunks) == 3
    assert (chunks[0]["documentId"], chunks[0]["chunkIndex"], chunks[0]["source"]) == (1, 0, "both")
    assert [c["rrfScore"] for c in chunks] == sorted((c["rrfScore"] for c in chunks), reverse=True)
    assert metadata["settings"]["searchMode"] == "hybrid"
    assert metadata["settings"]["rerankerEnabled"] is False
    assert metadata["settings"]["llmModel"] == "fake-model"
    assert metadata["transformedQueries"] == [QUESTION]
    assert set(metadata["timings"]) == {"transformationMs", "embeddingMs", "retrievalMs", "rerankingMs"}

    answer = "".join(e.data["token"] for e in events if e.type == "token")
    assert answer == "Deadlock is a circular wait."
    assert done["answerText"] == answer
    assert done["queryLogId"] == 1
    # "What is a deadlock?" is four embedding tokens for the fake embedder.
    assert done["finalCostUsd"] == pytest.approx(estimate_cost(4, 100, 20, PricingConfig()))

    [record] = log_sink.records
    assert record.answer_text == answer
    assert record.retrieved_chunks == chunks
    assert record.embedding_tokens == 4
    assert (record.prompt_tokens, record.completion_tokens) == (100, 20)
    assert record.timings.total_ms >= record.timings.generation_ms


@pytest.mark.anyio
async def test_prompt_is_built_from_template_and_context(make_pipeline, llm):
    await collect(make_pipeline(), QueryRequest(QUESTION, reranker_top_n=2, temperature=0.4))

    [(system_prompt, user_message, temperature)] = llm.stream_calls
    assert "[Chunk 1 | Doc 1, Chunk 0, Page 1]" in system_prompt
    assert "[Chunk 2 | " in system_prompt
    assert "[Chunk 3 | " not in system_prompt
    assert "{{context}}" not in system_prompt
    assert f"Question: {QUESTION}" in system_prompt
    assert user_message == QUESTION
    assert temperature == 0.4


@pytest.mark.anyio
async def test_custom_prompt_template(make_pipeline, llm):
    await collect(make_pipeline(), QueryRequest(QUESTION, prompt_template_id=2, reranker_top_n=1))
    system_prompt = llm.stream_calls[0][0]
    assert system_prompt.startswith(f"Q={QUESTION} C=[Chunk 1 | Doc 1, Chunk 0, Page 1]\n")


@pytest.mark.anyio
async def test_missing_prompt_template_is_an_error_event(make_pipeline, llm, log_sink):
    events = await collect(make_pipeline(), QueryRequest(QUESTION, prompt_template_id=99))

    assert [e.type for e in events] == ["error"]
    assert "99" in events[0].data["message"]
    assert llm.stream_calls == []
    assert log_sink.records == []


@pytest.mark.anyio
async def test_reranker_reorders_and_truncates(make_pipeline, reranker):
    pipeline = make_pipeline(reranker=reranker)
    events = await collect(pipeline, QueryRequest(QUESTION, reranker_enabled=True, reranker_top_n=2))

    [(query, candidates, top_n)] = reranker.calls
    assert query == QUESTION
    assert top_n == 2
    assert len(candidates) == 5

    chunks = events[0].data["retrievedChunks"]
    assert [c["text"] for c in chunks] == list(reversed(candidates))[:2]
    assert [c["rerankerScore"] for c in chunks] == pytest.approx([1.0, 0.8])
    assert events[0].data["settings"]["rerankerEnabled"] is True


@pytest.mark.anyio
async def test_reranking_without_reranker_fails_the_run(make_pipeline, llm, log_sink):
    events = await collect(make_pipeline(), QueryRequest(QUESTION, reranker_enabled=True))

    assert [e.type for e in events] == ["error"]
    assert "reranker" in events[0].data["message"]
    assert llm.stream_calls == []
    assert log_sink.records == []


@pytest.mark.anyio
async def test_multi_query_embeds_each_query_and_dedupes(make_pipeline, llm, embedder, log_sink):
    llm.generate_text = "deadlock conditions\n\ncircular wait deadlock\n"
    request = QueryRequest(
        QUESTION, search_mode=SearchMode.VECTOR, query_strategy=QueryStrategy.MULTI_QUERY
    )

    events = await collect(make_pipeline(), request)

    assert embedder.calls == [[QUESTION], ["deadlock conditions"], ["circular wait deadlock"]]
    metadata = events[0].data
    assert metadata["transformedQueries"] == [QUESTION, "deadlock conditions", "circular wait deadlock"]
    keys = [(c["documentId"], c["chunkIndex"]) for c in metadata["retrievedChunks"]]
    assert len(keys) == len(set(keys))
    assert all(c["source"] == "vector" for c in metadata["retrievedChunks"])
    assert all(c["vectorRank"] is not None for c in metadata["retrievedChunks"])
    # Transformation tokens are added to the generation tokens.
    assert log_sink.records[0].prompt_tokens == 130
    assert log_sink.records[0].completion_tokens == 30


@pytest.mark.anyio
async def test_bm25_mode_skips_embedding_and_respects_document_filter(make_pipeline, embedder):
    request = QueryRequest(
        "deadlock circular wait",
        search_mode=SearchMode.BM25,
        document_ids=[2],
        retrieval_top_k=1,
    )

    events = await collect(make_pipeline(), request)

    assert embedder.calls == []
    chunks = events[0].data["retrievedChunks"]
    # The best unfiltered hit is in document 1; filtering must not starve top_k.
    assert [(c["documentId"], c["chunkIndex"]) for c in chunks] == [(2, 1)]
    assert chunks[0]["source"] == "bm25"
    assert chunks[0]["bm25Rank"] == 1
    assert events[0].data["settings"]["documentIds"] == [2]


@pytest.mark.anyio
async def test_vector_mode_respects_document_filter(make_pipeline):
    request = QueryRequest(QUESTION, search_mode=SearchMode.VECTOR, document_ids=[1])
    events = await collect(make_pipeline(), request)
    chunks = events[0].data["retrievedChunks"]
    assert chunks
    assert {c["documentId"] for c in chunks} == {1}


@pytest.mark.anyio
async def test_bm25_mode_cost(make_pipeline, log_sink):
    events = await collect(make_pipeline(), QueryRequest(QUESTION, search_mode=SearchMode.BM25))

    done = events[-1].data
    assert done["finalCostUsd"] == pytest.approx(0.0008)
    assert log_sink.records[0].embedding_tokens == 0
    assert log_sink.records[0].estimated_cost_usd == pytest.approx(0.0008)


@pytest.mark.anyio
async def test_generation_failure_after_metadata(make_pipeline, llm, log_sink):
    llm.stream_error = CollaboratorError("generation", "upstream timeout")

    events = await collect(make_pipeline(), QueryRequest(QUESTION))

    assert [e.type for e in events] == ["metadata", "error"]
    assert "upstream timeout" in events[-1].data["message"]
    assert events[-1].is_terminal
    assert log_sink.records == []


@pytest.mark.anyio
async def test_empty_query_is_an_error_event(make_pipeline):
    events = await collect(make_pipeline(), QueryRequest("   "))
    assert [e.type for e in events] == ["error"]


@pytest.mark.anyio
async def test_execute_and_return(make_pipeline):
    pipeline = make_pipeline()

    result = await pipeline.execute_and_return(QueryRequest(QUESTION))
    assert result["answerText"] == "Deadlock is a circular wait."
    assert result["queryLogId"] == 1

    with pytest.raises(PipelineError):
        await pipeline.execute_and_return(QueryRequest(QUESTION, prompt_template_id=99))


@pytest.mark.anyio
async def test_closing_the_stream_early_persists_nothing(make_pipeline, llm, log_sink):
    events = make_pipeline().execute(QueryRequest(QUESTION))

    first = await events.__anext__()
    second = await events.__anext__()
    await events.aclose()

    assert (first.type, second.type) == ("metadata", "token")
    assert log_sink.records == []
    # The upstream completion is closed before aclose() returns.
    assert llm.upstream_closed == [True]


@pytest.mark.anyio
async def test_query_log_row_mirrors_run(make_pipeline, log_sink):
    request = QueryRequest(QUESTION, search_mode=SearchMode.HYBRID, reranker_top_n=3, document_ids=[1, 2])
    await collect(make_pipeline(), request)

    row = await log_sink.get(1)
    assert row.query_text == QUESTION
    assert row.search_mode == "hybrid"
    assert row.query_strategy == "direct"
    assert row.reranker_top_n == 3
    assert row.document_ids == [1, 2]
    assert row.transformed_queries == [QUESTION]
    assert len(row.retrieved_chunks) == 3
    assert row.llm_model == "fake-model"


def test_resolve_settings_applies_overrides():
    config = RAGConfig()
    request = QueryRequest(
        QUESTION,
        search_mode=SearchMode.BM25,
        query_strategy=QueryStrategy.HYDE,
        reranker_enabled=False,
        temperature=0.0,
        retrieval_top_k=7,
        reranker_top_n=2,
        document_ids=[3],
        prompt_template_id=4,
    )

    settings = resolve_settings(request, config, "gpt-4o")

    assert settings.search_mode is SearchMode.BM25
    assert settings.query_strategy is QueryStrategy.HYDE
    assert settings.reranker_enabled is False
    assert settings.temperature == 0.0
    assert (settings.retrieval_top_k, settings.reranker_top_n) == (7, 2)
    assert settings.document_ids == (3,)
    assert settings.prompt_template_id == 4


def test_resolve_settings_defaults():
    settings = resolve_settings(QueryRequest(QUESTION, document_ids=[]), RAGConfig(), "m")
    assert settings.search_mode is SearchMode.HYBRID
    assert settings.query_strategy is QueryStrategy.DIRECT
    assert settings.reranker_enabled is True
    assert settings.temperature == 0.1
    assert (settings.retrieval_top_k, settings.reranker_top_n) == (20, 5)
    assert settings.document_ids is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"query_text": ""},
        {"query_text": "  \n"},
        {"temperature": 2.5},
        {"temperature": -0.1},
        {"retrieval_top_k": 0},
        {"retrieval_top_k": 101},
        {"reranker_top_n": 0},
        {"reranker_top_n": 51},
        {"search_mode": "fuzzy"},
        {"query_strategy": "telepathy"},
    ],
)
def test_resolve_settings_rejects_invalid_values(overrides):
    request = QueryRequest(**{"query_text": QUESTION, **overrides})
    with pytest.raises(ValidationError):
        resolve_settings(request, RAGConfig(), "m")


class _RendezvousVectorStore:
    """Only answers once the BM25 branch is running at the same time."""

    def __init__(self, inner, vector_started, bm25_started, finished):
        self.inner = inner
        self.vector_started = vector_started
        self.bm25_started = bm25_started
        self.finished = finished

    async def search(self, vector, top_k, document_ids=None):
        self.vector_started.set()
        await asyncio.wait_for(self.bm25_started.wait(), timeout=5)
        results = await self.inner.search(vector, top_k, document_ids)
        self.finished.append("vector")
        return results


class _RendezvousBM25:
    """Waits in its worker thread until vector search has started."""

    def __init__(self, inner, loop, vector_started, bm25_started, finished):
        self.inner = inner
        self.loop = loop
        self.vector_started = vector_started
        self.bm25_started = bm25_started
        self.finished = finished

    def __len__(self):
        return len(self.inner)

    def search(self, query, top_k=20):
        self.loop.call_soon_threadsafe(self.bm25_started.set)
        assert self.vector_started.wait(timeout=5)
        results = self.inner.search(query, top_k)
        self.finished.append("bm25")
        return results


@pytest.mark.anyio
async def test_hybrid_branches_run_concurrently_and_join_before_metadata(
    make_pipeline, vector_store, bm25_index
):
    vector_started = threading.Event()
    bm25_started = asyncio.Event()
    finished = []
    pipeline = make_pipeline(
        vector_store=_RendezvousVectorStore(vector_store, vector_started, bm25_started, finished),
        bm25_index=_RendezvousBM25(
            bm25_index, asyncio.get_running_loop(), vector_started, bm25_started, finished
        ),
    )

    events = pipeline.execute(QueryRequest(QUESTION, reranker_top_n=3))
    first = await events.__anext__()

    assert first.type == "metadata"
    assert sorted(finished) == ["bm25", "vector"]
    assert first.data["retrievedChunks"][0]["source"] == "both"

    rest = [event async for event in events]
    assert rest[-1].type == "done"
