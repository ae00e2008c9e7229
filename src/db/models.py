from __future__ import annotations

import datetime as dt
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Integer, JSON, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class DocumentStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    original_filename: Mapped[str] = mapped_column(String(512), nullable=False)
    # Extracted page text: [{"page_number": 1, "text": "..."}, ...]
    pages: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    page_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    chunk_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # fixed, recursive, semantic
    chunk_strategy: Mapped[str] = mapped_column(String(16), nullable=False)
    chunk_size: Mapped[int] = mapped_column(Integer, default=512, nullable=False)
    chunk_overlap: Mapped[int] = mapped_column(Integer, default=50, nullable=False)

    # pending, processing, ready, error
    status: Mapped[str] = mapped_column(
        String(16), default=DocumentStatus.PENDING, nullable=False, index=True
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=dt.datetime.utcnow,
        nullable=False,
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=dt.datetime.utcnow,
        onupdate=dt.datetime.utcnow,
        nullable=False,
    )


class PromptTemplateRow(Base):
    __tablename__ = "prompt_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    system_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=dt.datetime.utcnow,
        nullable=False,
    )


class QueryLog(Base):
    __tablename__ = "query_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    query_text: Mapped[str] = mapped_column(Text, nullable=False)
    answer_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    query_strategy: Mapped[str] = mapped_column(String(16), default="direct", nullable=False)
    search_mode: Mapped[str] = mapped_column(String(16), default="hybrid", nullable=False)
    reranker_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    temperature: Mapped[float] = mapped_column(Float, default=0.1, nullable=False)
    retrieval_top_k: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    reranker_top_n: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    llm_model: Mapped[str] = mapped_column(String(100), default="gpt-4o", nullable=False)
    prompt_template_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    document_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    transformed_queries: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    transformation_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    query_embedding_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    retrieval_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reranking_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    generation_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    embedding_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    prompt_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completion_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    estimated_cost_usd: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    retrieved_chunks: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        default=dt.datetime.utcnow,
        nullable=False,
        index=True,
    )
