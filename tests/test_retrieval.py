"""
Tests for the dense vector store, embedding providers and rerankers.

Model-backed collaborators get a stand-in model or HTTP transport; nothing is
downloaded and no network call is made.
"""

from __future__ import annotations

import json
from types import SimpleNamespace

import httpx
import numpy as np
import pytest
from openai import OpenAIError

from src.chunking import Chunk
from src.common.errors import CollaboratorError
from src.rag import (
    CrossEncoderReranker,
    InMemoryVectorStore,
    JinaReranker,
    OpenAIEmbedder,
    RAGConfig,
    SentenceTransformerEmbedder,
    create_embedder,
    create_reranker,
)
from src.rag.reranker import JINA_RERANK_URL


def _chunks(n: int) -> list[Chunk]:
    return [Chunk(text=f"chunk {i}", chunk_index=i, page_number=1, start_char=0, end_char=7) for i in range(n)]


@pytest.mark.anyio
async def test_vector_store_ranks_by_cosine():
    store = InMemoryVectorStore()
    await store.upsert(1, _chunks(3), [[1, 0], [0, 1], [1, 1]], "fixed")

    results = await store.search([2, 0], top_k=2)

    assert [r.chunk_index for r in results] == [0, 2]
    assert results[0].score == pytest.approx(1.0)
    assert results[1].score == pytest.approx(1 / np.sqrt(2))
    assert results[0].chunk_strategy == "fixed"
    assert results[0].page_number == 1


@pytest.mark.anyio
async def test_vector_store_document_filter_and_delete():
    store = InMemoryVectorStore()
    await store.upsert(1, _chunks(2), [[1, 0], [0, 1]])
    await store.upsert(2, _chunks(1), [[1, 0]])

    filtered = await store.search([1, 0], top_k=10, document_ids=[2])
    assert [(r.document_id, r.chunk_index) for r in filtered] == [(2, 0)]

    await store.delete_document(2)
    await store.delete_document(2)
    assert 2 not in store
    assert {r.document_id for r in await store.search([1, 0], top_k=10)} == {1}
    assert await store.search([1, 0], top_k=0) == []


@pytest.mark.anyio
async def test_vector_store_rejects_mismatched_vectors():
    store = InMemoryVectorStore()
    with pytest.raises(ValueError):
        await store.upsert(1, _chunks(2), [[1, 0]])


@pytest.mark.anyio
async def test_vector_store_handles_zero_vectors_and_empty_documents():
    store = InMemoryVectorStore()
    await store.upsert(1, _chunks(1), [[0, 0]])
    await store.upsert(2, [], [])

    [result] = await store.search([1, 1], top_k=5)
    assert result.score == 0.0


class _FakeEmbeddings:
    def __init__(self, error: Exception | None = None):
        self.inputs = []
        self.error = error

    async def create(self, model, input):
        if self.error is not None:
            raise self.error
        self.inputs.append(list(input))
        # Returned out of order; the embedder must sort by index.
        data = [SimpleNamespace(index=i, embedding=[float(len(t))]) for i, t in enumerate(input)]
        return SimpleNamespace(data=list(reversed(data)), usage=SimpleNamespace(total_tokens=len(input) * 3))


@pytest.mark.anyio
async def test_openai_embedder_batches_and_orders():
    embeddings = _FakeEmbeddings()
    embedder = OpenAIEmbedder(SimpleNamespace(embeddings=embeddings), model_name="m", batch_size=2)

    result = await embedder.embed(["a", "bb", "ccc"])

    assert embeddings.inputs == [["a", "bb"], ["ccc"]]
    assert result.vectors == [[1.0], [2.0], [3.0]]
    assert result.total_tokens == 9


@pytest.mark.anyio
async def test_openai_embedder_wraps_errors():
    embedder = OpenAIEmbedder(SimpleNamespace(embeddings=_FakeEmbeddings(OpenAIError("quota"))))
    with pytest.raises(CollaboratorError) as excinfo:
        await embedder.embed(["a"])
    assert excinfo.value.collaborator == "embedding"
    assert (await embedder.embed([])).vectors == []


class _FakeSentenceModel:
    def encode(self, texts, **kwargs):
        assert kwargs["normalize_embeddings"] is True
        return np.array([[1.0, 0.0] for _ in texts])

    def tokenizer(self, texts):
        return {"input_ids": [t.split() for t in texts]}


@pytest.mark.anyio
async def test_sentence_transformer_embedder_counts_tokens():
    embedder = SentenceTransformerEmbedder("local-model")
    embedder._model = _FakeSentenceModel()

    result = await embedder.embed(["one two", "three"])

    assert result.vectors == [[1.0, 0.0], [1.0, 0.0]]
    assert result.total_tokens == 3


class _FakeCrossEncoder:
    def predict(self, pairs, batch_size):
        return [len(doc) for _, doc in pairs]


@pytest.mark.anyio
async def test_cross_encoder_reranker_sorts_and_truncates():
    reranker = CrossEncoderReranker("local-model")
    reranker._model = _FakeCrossEncoder()

    results = await reranker.rerank("q", ["bb", "a", "dddd", "ccc"], top_n=2)

    assert [(r.index, r.relevance_score) for r in results] == [(2, 4.0), (3, 3.0)]
    assert await reranker.rerank("q", [], top_n=2) == []


@pytest.mark.anyio
async def test_jina_reranker_posts_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"results": [{"index": 1, "relevance_score": 0.9}, {"index": 0, "relevance_score": 0.2}]},
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        reranker = JinaReranker(api_key="jina-key", client=client)
        results = await reranker.rerank("what is paging", ["a", "b"], top_n=2)

    assert [(r.index, r.relevance_score) for r in results] == [(1, 0.9), (0, 0.2)]
    assert seen["url"] == JINA_RERANK_URL
    assert seen["auth"] == "Bearer jina-key"
    assert seen["body"]["top_n"] == 2
    assert seen["body"]["documents"] == ["a", "b"]


@pytest.mark.anyio
async def test_jina_reranker_errors():
    with pytest.raises(CollaboratorError):
        await JinaReranker(api_key=None).rerank("q", ["a"], top_n=1)

    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(CollaboratorError):
            await JinaReranker(api_key="k", client=client).rerank("q", ["a"], top_n=1)


def test_factories_follow_config(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert isinstance(create_embedder(RAGConfig()), SentenceTransformerEmbedder)
    assert isinstance(create_embedder(RAGConfig(embedding_provider="openai")), OpenAIEmbedder)
    assert isinstance(create_reranker(RAGConfig()), CrossEncoderReranker)
    assert isinstance(create_reranker(RAGConfig(reranker_provider="jina")), JinaReranker)


def test_rag_config_from_env(monkeypatch):
    monkeypatch.setenv("DEFAULT_SEARCH_MODE", "BM25")
    monkeypatch.setenv("DEFAULT_RETRIEVAL_TOP_K", "8")
    monkeypatch.setenv("RERANKER_ENABLED", "false")
    monkeypatch.setenv("DEFAULT_CHUNK_STRATEGY", "sideways")

    config = RAGConfig.from_env()

    assert config.search_mode == "bm25"
    assert config.retrieval_top_k == 8
    assert config.reranker_enabled is False
    assert config.chunk_strategy == "recursive"

    monkeypatch.setenv("RRF_K", "sixty")
    with pytest.raises(ValueError):
        RAGConfig.from_env()
