"""
Document indexing: chunk pre-extracted pages, embed the chunks, and keep the
vector store and the BM25 index in step with the persisted documents.

The indexes never call back into this service; it is the only writer.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from src.chunking import Chunk, ChunkEngine, ChunkStats, ChunkStrategy, PageText, summarize_chunks
from src.common.errors import NotFoundError, ValidationError
from src.db.models import Document, DocumentStatus
from src.rag.bm25 import BM25Index
from src.rag.config import RAGConfig
from src.rag.dense import VectorStore
from src.rag.embeddings import EmbeddingProvider

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    async def create(
        self,
        original_filename: str,
        pages: List[dict],
        chunk_strategy: str,
        chunk_size: int,
        chunk_overlap: int,
    ) -> Document: ...

    async def get(self, document_id: int) -> Optional[Document]: ...

    async def update(self, document_id: int, **fields: Any) -> None: ...

    async def delete(self, document_id: int) -> None: ...

    async def list_ready(self) -> List[Document]: ...


def pages_from_json(raw: Sequence[dict]) -> List[PageText]:
    return [PageText(page_number=int(p["page_number"]), text=p.get("text") or "") for p in raw]


def pages_to_json(pages: Sequence[PageText]) -> List[dict]:
    return [{"page_number": p.page_number, "text": p.text} for p in pages]


class DocumentService:
    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingProvider,
        vector_store: VectorStore,
        bm25_index: BM25Index,
        config: Optional[RAGConfig] = None,
        chunk_engine: Optional[ChunkEngine] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.vector_store = vector_store
        self.bm25_index = bm25_index
        self.config = config or RAGConfig()
        self.chunk_engine = chunk_engine or ChunkEngine(
            semantic_threshold=self.config.semantic_similarity_threshold
        )

    def _chunk(
        self,
        pages: Sequence[PageText],
        strategy: ChunkStrategy,
        chunk_size: int,
        chunk_overlap: int,
    ) -> List[Chunk]:
        try:
            return self.chunk_engine.chunk(pages, strategy, chunk_size, chunk_overlap)
        except ValueError as e:
            raise ValidationError(str(e)) from e

    def _resolve_params(
        self,
        strategy: Optional[ChunkStrategy],
        chunk_size: Optional[int],
        chunk_overlap: Optional[int],
    ) -> Tuple[ChunkStrategy, int, int]:
        return (
            ChunkStrategy.parse(strategy or self.config.chunk_strategy),
            chunk_size if chunk_size is not None else self.config.chunk_size,
            chunk_overlap if chunk_overlap is not None else self.config.chunk_overlap,
        )

    async def _index_chunks(
        self, document_id: int, chunks: List[Chunk], strategy: ChunkStrategy
    ) -> int:
        """Embed chunks and write them to both indexes. Returns embedding tokens used."""
        embedded = await self.embedder.embed([c.text for c in chunks])
        await self.vector_store.upsert(document_id, chunks, embedded.vectors, strategy.value)
        self.bm25_index.add_document(document_id, chunks, strategy.value)
        return embedded.total_tokens

    async def get_document(self, document_id: int) -> Document:
        doc = await self.store.get(document_id)
        if doc is None:
            raise NotFoundError(f"Document #{document_id} not found")
        return doc

    async def index_document(
        self,
        original_filename: str,
        pages: Sequence[PageText],
        chunk_strategy: Optional[ChunkStrategy] = None,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ) -> Tuple[Document, List[Chunk]]:
        """Persist a document, chunk and index it; status ends as ready or error."""
        strategy, size, overlap = self._resolve_params(chunk_strategy, chunk_size, chunk_overlap)
        # Reject bad chunking parameters before anything is persisted.
        self._chunk([], strategy, size, overlap)

        doc = await self.store.create(
            original_filename=original_filename,
            pages=pages_to_json(pages),
            chunk_strategy=strategy.value,
            chunk_size=size,
            chunk_overlap=overlap,
        )
        try:
            await self.store.update(doc.id, status=DocumentStatus.PROCESSING)
            chunks = self._chunk(pages, strategy, size, overlap)
            tokens = await self._index_chunks(doc.id, chunks, strategy)
            logger.info(
                "Indexed %s chunks for document %s (%s embedding tokens)",
                len(chunks),
                doc.id,
                tokens,
            )
            await self.store.update(
                doc.id, status=DocumentStatus.READY, chunk_count=len(chunks), error_message=None
            )
        except Exception as e:
            logger.error("Failed to process document %s: %s", doc.id, e)
            await self.store.update(doc.id, status=DocumentStatus.ERROR, error_message=str(e))
            raise

        doc.status = DocumentStatus.READY
        doc.chunk_count = len(chunks)
        return doc, chunks

    async def get_chunks(self, document_id: int) -> List[Chunk]:
        """Re-derive a ready document's chunks from its stored pages and parameters."""
        doc = await self.get_document(document_id)
        if doc.status != DocumentStatus.READY:
            raise ValidationError(f"Document #{document_id} is not ready (status: {doc.status})")
        return self._chunk(
            pages_from_json(doc.pages),
            ChunkStrategy.parse(doc.chunk_strategy),
            doc.chunk_size,
            doc.chunk_overlap,
        )

    async def remove_document(self, document_id: int) -> None:
        doc = await self.get_document(document_id)
        await self.vector_store.delete_document(doc.id)
        self.bm25_index.remove_document(doc.id)
        await self.store.delete(doc.id)
        logger.info("Removed document %s", doc.id)

    async def rechunk_document(
        self,
        document_id: int,
        chunk_strategy: Optional[ChunkStrategy] = None,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ) -> Tuple[Document, List[Chunk]]:
        """Drop a document's index entries and re-index it with new chunking parameters."""
        doc = await self.get_document(document_id)
        strategy, size, overlap = self._resolve_params(chunk_strategy, chunk_size, chunk_overlap)
        chunks = self._chunk(pages_from_json(doc.pages), strategy, size, overlap)

        await self.vector_store.delete_document(doc.id)
        self.bm25_index.remove_document(doc.id)
        try:
            tokens = await self._index_chunks(doc.id, chunks, strategy)
        except Exception as e:
            logger.error("Failed to re-index document %s: %s", doc.id, e)
            await self.store.update(doc.id, status=DocumentStatus.ERROR, error_message=str(e))
            raise
        logger.info(
            "Re-indexed %s chunks for document %s (%s embedding tokens)", len(chunks), doc.id, tokens
        )

        fields = {
            "chunk_strategy": strategy.value,
            "chunk_size": size,
            "chunk_overlap": overlap,
            "chunk_count": len(chunks),
            "status": DocumentStatus.READY,
            "error_message": None,
        }
        await self.store.update(doc.id, **fields)
        for name, value in fields.items():
            setattr(doc, name, value)
        return doc, chunks

    def preview_chunks(
        self,
        pages: Sequence[PageText],
        chunk_strategy: Optional[ChunkStrategy] = None,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ) -> Tuple[List[Chunk], ChunkStats]:
        """Chunk without indexing anything."""
        strategy, size, overlap = self._resolve_params(chunk_strategy, chunk_size, chunk_overlap)
        chunks = self._chunk(pages, strategy, size, overlap)
        return chunks, summarize_chunks(chunks)

    async def bootstrap(self) -> int:
        """
        Rebuild the in-memory indexes from every ready document.

        A document that fails to chunk or embed is logged and skipped. The BM25
        index is rebuilt once for the whole batch. Returns the number of
        documents indexed.
        """
        docs = await self.store.list_ready()
        batch: Dict[int, List[Chunk]] = {}
        strategies: Dict[int, str] = {}
        for doc in docs:
            try:
                strategy = ChunkStrategy.parse(doc.chunk_strategy)
                chunks = self._chunk(
                    pages_from_json(doc.pages), strategy, doc.chunk_size, doc.chunk_overlap
                )
                embedded = await self.embedder.embed([c.text for c in chunks])
                await self.vector_store.upsert(doc.id, chunks, embedded.vectors, strategy.value)
            except Exception as e:
                logger.warning("Skipping document %s during index bootstrap: %s", doc.id, e)
                continue
            batch[doc.id] = chunks
            strategies[doc.id] = strategy.value

        if batch:
            self.bm25_index.add_documents(batch, strategies)
        logger.info("Index bootstrap: %s of %s ready documents indexed", len(batch), len(docs))
        return len(batch)
