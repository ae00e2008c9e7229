"""
Shared fakes for pipeline, document and API tests.

Nothing here talks to a network service or a database.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Sequence

import pytest

from src.chunking import Chunk
from src.db.models import Document, DocumentStatus
from src.db.repositories import query_log_row
from src.generation.prompts import DEFAULT_SYSTEM_PROMPT, DEFAULT_TEMPLATE_NAME
from src.llm.client import ChatStream, GenerationResult
from src.pipeline import PromptTemplate, QueryPipeline
from src.rag import BM25Index, EmbeddingResult, InMemoryVectorStore, RAGConfig, RerankResult, tokenize

VOCAB = [
    "deadlock", "process", "processes", "circular", "wait", "scheduling", "cpu",
    "paging", "memory", "pages", "tcp", "handshake", "syn", "ack", "connection",
    "prevention", "conditions", "necessary",
]

CORPUS: Dict[int, List[str]] = {
    1: [
        "Deadlock occurs when processes wait for each other in a circular chain.",
        "Process scheduling decides which process runs next on the CPU.",
        "Paging divides memory into fixed size pages.",
    ],
    2: [
        "The TCP handshake uses SYN and ACK packets to open a connection.",
        "Deadlock prevention breaks one of the four necessary conditions.",
    ],
}


@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_chunks(texts: Sequence[str]) -> List[Chunk]:
    return [
        Chunk(text=t, chunk_index=i, page_number=1, start_char=0, end_char=len(t))
        for i, t in enumerate(texts)
    ]


class FakeEmbedder:
    """Bag-of-words vectors over a small fixed vocabulary."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []

    async def embed(self, texts: Sequence[str]) -> EmbeddingResult:
        self.calls.append(list(texts))
        vectors = []
        tokens = 0
        for text in texts:
            words = tokenize(text)
            tokens += len(words)
            vectors.append([float(words.count(term)) for term in VOCAB])
        return EmbeddingResult(vectors=vectors, total_tokens=tokens)


def _stream_chunk(content: Optional[str] = None, usage: Any = None) -> SimpleNamespace:
    choices = [SimpleNamespace(delta=SimpleNamespace(content=content))] if content is not None else []
    return SimpleNamespace(choices=choices, usage=usage)


class FakeLLM:
    model_name = "fake-model"

    def __init__(
        self,
        tokens: Sequence[str] = ("Deadlock ", "is ", "a circular wait."),
        generate_text: str = "",
        usage: tuple[int, int] = (100, 20),
        stream_error: Optional[Exception] = None,
    ):
        self.tokens = list(tokens)
        self.generate_text = generate_text
        self.usage = usage
        self.stream_error = stream_error
        self.generate_calls: List[tuple[str, str, float]] = []
        self.stream_calls: List[tuple[str, str, float]] = []
        self.upstream_closed: List[bool] = []

    async def generate(self, system_prompt: str, user_message: str, temperature: float) -> GenerationResult:
        self.generate_calls.append((system_prompt, user_message, temperature))
        return GenerationResult(text=self.generate_text, prompt_tokens=30, completion_tokens=10)

    async def stream(self, system_prompt: str, user_message: str, temperature: float) -> ChatStream:
        self.stream_calls.append((system_prompt, user_message, temperature))
        if self.stream_error is not None:
            raise self.stream_error
        tokens = self.tokens
        prompt_tokens, completion_tokens = self.usage

        closed = self.upstream_closed

        async def chunks():
            try:
                for token in tokens:
                    yield _stream_chunk(token)
                yield _stream_chunk(
                    usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
                )
            finally:
                closed.append(True)

        return ChatStream(chunks())


class ReverseReranker:
    """Scores documents so the submitted order is reversed."""

    def __init__(self) -> None:
        self.calls: List[tuple[str, List[str], int]] = []

    async def rerank(self, query: str, documents: Sequence[str], top_n: int) -> List[RerankResult]:
        self.calls.append((query, list(documents), top_n))
        n = len(documents)
        results = [RerankResult(index=i, relevance_score=float(i + 1) / n) for i in range(n)]
        return list(reversed(results))[:top_n]


class FakeTemplates:
    def __init__(self) -> None:
        self.templates = {
            1: PromptTemplate(
                id=1, name=DEFAULT_TEMPLATE_NAME, system_prompt=DEFAULT_SYSTEM_PROMPT, is_default=True
            ),
            2: PromptTemplate(id=2, name="terse", system_prompt="Q={{query}} C={{context}}"),
        }

    async def get(self, template_id: int) -> Optional[PromptTemplate]:
        return self.templates.get(template_id)

    async def get_default(self) -> Optional[PromptTemplate]:
        return next((t for t in self.templates.values() if t.is_default), None)

    async def ensure_default(self) -> PromptTemplate:
        return await self.get_default()


class FakeLogSink:
    def __init__(self) -> None:
        self.records = []
        self.rows = {}

    async def save(self, record) -> int:
        self.records.append(record)
        row = query_log_row(record)
        row.id = len(self.records)
        self.rows[row.id] = row
        return row.id

    async def get(self, log_id: int):
        return self.rows.get(log_id)

    async def list_recent(self, limit: int = 50, offset: int = 0):
        rows = sorted(self.rows.values(), key=lambda r: r.id, reverse=True)
        return rows[offset : offset + limit]


class FakeDocumentStore:
    def __init__(self) -> None:
        self.docs: Dict[int, Document] = {}
        self._next_id = 1

    def add(self, doc: Document) -> Document:
        if doc.id is None:
            doc.id = self._next_id
        self._next_id = max(self._next_id, doc.id) + 1
        self.docs[doc.id] = doc
        return doc

    async def create(self, original_filename, pages, chunk_strategy, chunk_size, chunk_overlap) -> Document:
        return self.add(
            Document(
                original_filename=original_filename,
                pages=pages,
                page_count=len(pages),
                chunk_count=0,
                chunk_strategy=chunk_strategy,
                chunk_size=chunk_size,
                chunk_overlap=chunk_overlap,
                status=DocumentStatus.PENDING,
            )
        )

    async def get(self, document_id: int) -> Optional[Document]:
        return self.docs.get(document_id)

    async def update(self, document_id: int, **fields: Any) -> None:
        doc = self.docs[document_id]
        for name, value in fields.items():
            setattr(doc, name, value)

    async def delete(self, document_id: int) -> None:
        self.docs.pop(document_id, None)

    async def list_ready(self) -> List[Document]:
        return [d for d in self.docs.values() if d.status == DocumentStatus.READY]


@pytest.fixture
def rag_config() -> RAGConfig:
    return RAGConfig(reranker_enabled=False)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def log_sink() -> FakeLogSink:
    return FakeLogSink()


@pytest.fixture
def bm25_index() -> BM25Index:
    index = BM25Index()
    for doc_id, texts in CORPUS.items():
        index.add_document(doc_id, make_chunks(texts), "recursive")
    return index


@pytest.fixture
async def vector_store(anyio_backend, embedder: FakeEmbedder) -> InMemoryVectorStore:
    store = InMemoryVectorStore()
    for doc_id, texts in CORPUS.items():
        embedded = await embedder.embed(texts)
        await store.upsert(doc_id, make_chunks(texts), embedded.vectors, "recursive")
    embedder.calls.clear()
    return store


@pytest.fixture
def make_pipeline(rag_config, llm, embedder, vector_store, bm25_index, log_sink, templates):
    def _make(**overrides: Any) -> QueryPipeline:
        kwargs = dict(
            config=rag_config,
            llm=llm,
            embedder=embedder,
            vector_store=vector_store,
            bm25_index=bm25_index,
            templates=templates,
            log_sink=log_sink,
        )
        kwargs.update(overrides)
        return QueryPipeline(**kwargs)

    return _make


@pytest.fixture
def reranker() -> ReverseReranker:
    return ReverseReranker()


@pytest.fixture
def document_store() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture
def templates() -> FakeTemplates:
    return FakeTemplates()
