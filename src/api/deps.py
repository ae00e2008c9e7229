"""
Build the pipeline, indexes and stores for the API (used in lifespan).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from src.documents import DocumentService
from src.generation import GenerationConfig, PricingConfig
from src.llm import create_client
from src.pipeline import QueryPipeline
from src.rag import BM25Index, InMemoryVectorStore, RAGConfig, create_embedder, create_reranker

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: RAGConfig
    bm25_index: BM25Index
    pipeline: QueryPipeline
    documents: DocumentService
    templates: Any
    query_logs: Any


def build_services() -> Optional[Services]:
    """
    Wire collaborators from the environment.

    Returns None when the LLM client cannot be configured, so routes answer 503.
    """
    from src.db.repositories import SqlDocumentStore, SqlPromptTemplateStore, SqlQueryLogSink
    from src.db.session import AsyncSessionLocal

    config = RAGConfig.from_env()
    try:
        llm = create_client(GenerationConfig.from_env())
    except ValueError as e:
        logger.error("LLM client not configured: %s", e)
        return None

    bm25_index = BM25Index(k1=config.bm25_k1, b=config.bm25_b)
    vector_store = InMemoryVectorStore()
    embedder = create_embedder(config)
    templates = SqlPromptTemplateStore(AsyncSessionLocal)
    query_logs = SqlQueryLogSink(AsyncSessionLocal)

    pipeline = QueryPipeline(
        config=config,
        llm=llm,
        embedder=embedder,
        vector_store=vector_store,
        bm25_index=bm25_index,
        templates=templates,
        log_sink=query_logs,
        reranker=create_reranker(config),
        pricing=PricingConfig.from_env(),
    )
    documents = DocumentService(
        store=SqlDocumentStore(AsyncSessionLocal),
        embedder=embedder,
        vector_store=vector_store,
        bm25_index=bm25_index,
        config=config,
    )
    return Services(
        config=config,
        bm25_index=bm25_index,
        pipeline=pipeline,
        documents=documents,
        templates=templates,
        query_logs=query_logs,
    )


async def start_services(services: Services) -> None:
    """Seed the default prompt template and rebuild the indexes from ready documents."""
    await services.templates.ensure_default()
    await services.documents.bootstrap()
