"""
SQLAlchemy-backed stores for documents, prompt templates and query logs.

Each store opens a short-lived session per call from an async_sessionmaker.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.generation.prompts import DEFAULT_SYSTEM_PROMPT, DEFAULT_TEMPLATE_NAME
from src.pipeline.models import PromptTemplate, QueryLogRecord

from .models import Document, DocumentStatus, PromptTemplateRow, QueryLog

logger = logging.getLogger(__name__)


def _to_template(row: PromptTemplateRow) -> PromptTemplate:
    return PromptTemplate(
        id=row.id,
        name=row.name,
        system_prompt=row.system_prompt,
        is_default=row.is_default,
        description=row.description,
    )


class SqlPromptTemplateStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, template_id: int) -> Optional[PromptTemplate]:
        async with self.session_factory() as session:
            row = await session.get(PromptTemplateRow, template_id)
            return _to_template(row) if row is not None else None

    async def get_default(self) -> Optional[PromptTemplate]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PromptTemplateRow)
                .where(PromptTemplateRow.is_default.is_(True))
                .order_by(PromptTemplateRow.id)
                .limit(1)
            )
            row = result.scalars().first()
            return _to_template(row) if row is not None else None

    async def ensure_default(self) -> PromptTemplate:
        """Seed the default template if no template is marked default."""
        existing = await self.get_default()
        if existing is not None:
            return existing
        async with self.session_factory() as session:
            row = PromptTemplateRow(
                name=DEFAULT_TEMPLATE_NAME,
                system_prompt=DEFAULT_SYSTEM_PROMPT,
                description="Default RAG prompt template with context and query placeholders",
                is_default=True,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
        logger.info("Default prompt template seeded (id=%s)", row.id)
        return _to_template(row)


def query_log_row(record: QueryLogRecord) -> QueryLog:
    settings = record.settings
    timings = record.timings
    return QueryLog(
        query_text=record.query_text,
        answer_text=record.answer_text,
        query_strategy=settings.query_strategy.value,
        search_mode=settings.search_mode.value,
        reranker_enabled=settings.reranker_enabled,
        temperature=settings.temperature,
        retrieval_top_k=settings.retrieval_top_k,
        reranker_top_n=settings.reranker_top_n,
        llm_model=settings.llm_model,
        prompt_template_id=settings.prompt_template_id,
        document_ids=list(settings.document_ids) if settings.document_ids else None,
        transformed_queries=list(record.transformed_queries),
        transformation_ms=timings.transformation_ms,
        query_embedding_ms=timings.embedding_ms,
        retrieval_ms=timings.retrieval_ms,
        reranking_ms=timings.reranking_ms,
        generation_ms=timings.generation_ms,
        total_ms=timings.total_ms,
        embedding_tokens=record.embedding_tokens,
        prompt_tokens=record.prompt_tokens,
        completion_tokens=record.completion_tokens,
        estimated_cost_usd=record.estimated_cost_usd,
        retrieved_chunks=record.retrieved_chunks,
    )


class SqlQueryLogSink:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save(self, record: QueryLogRecord) -> int:
        row = query_log_row(record)
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
        return row.id

    async def get(self, log_id: int) -> Optional[QueryLog]:
        async with self.session_factory() as session:
            return await session.get(QueryLog, log_id)

    async def list_recent(self, limit: int = 50, offset: int = 0) -> List[QueryLog]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(QueryLog)
                .order_by(QueryLog.created_at.desc(), QueryLog.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all())


class SqlDocumentStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(
        self,
        original_filename: str,
        pages: List[dict],
        chunk_strategy: str,
        chunk_size: int,
        chunk_overlap: int,
    ) -> Document:
        doc = Document(
            original_filename=original_filename,
            pages=pages,
            page_count=len(pages),
            chunk_strategy=chunk_strategy,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            status=DocumentStatus.PENDING,
        )
        async with self.session_factory() as session:
            session.add(doc)
            await session.commit()
            await session.refresh(doc)
        return doc

    async def get(self, document_id: int) -> Optional[Document]:
        async with self.session_factory() as session:
            return await session.get(Document, document_id)

    async def update(self, document_id: int, **fields: Any) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Document).where(Document.id == document_id).values(**fields)
            )
            await session.commit()

    async def delete(self, document_id: int) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(Document).where(Document.id == document_id))
            await session.commit()

    async def list_ready(self) -> List[Document]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Document)
                .where(Document.status == DocumentStatus.READY)
                .order_by(Document.id)
            )
            return list(result.scalars().all())
