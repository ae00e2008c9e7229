"""
API routes: query (SSE), lexical search, documents, chunk preview, query logs, health.
"""

from __future__ import annotations

from typing import AsyncIterator, List

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from src.chunking import PageText
from src.common.errors import NotFoundError
from src.pipeline import SSE_DONE, QueryPipeline, QueryRequest

from .deps import Services
from .models import (
    ChunkOut,
    ChunkParams,
    ChunkPreviewRequest,
    ChunkPreviewResponse,
    ChunkStatsOut,
    DocumentCreate,
    DocumentIndexResponse,
    DocumentOut,
    HealthResponse,
    PageIn,
    QueryBody,
    QueryLogOut,
    SearchHit,
    SearchRequest,
    SearchResponse,
)

router = APIRouter(prefix="/api", tags=["api"])


def _unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"detail": "Service unavailable: pipeline not initialized."},
    )


def _get_services(request: Request) -> Services | None:
    return getattr(request.app.state, "services", None)


def _pages(pages: List[PageIn]) -> List[PageText]:
    return [PageText(page_number=p.page_number, text=p.text) for p in pages]


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Health check with lexical index statistics."""
    services = _get_services(request)
    if services is None:
        return HealthResponse(status="unavailable")
    index = services.bm25_index
    return HealthResponse(
        status="ok",
        indexed_documents=len(index.document_ids),
        indexed_chunks=index.stats.total_chunks,
        avg_chunk_length=round(index.stats.avg_chunk_length, 2),
    )


async def _stream_query(pipeline: QueryPipeline, query: QueryRequest) -> AsyncIterator[str]:
    events = pipeline.execute(query)
    try:
        async for event in events:
            yield event.to_sse()
    finally:
        await events.aclose()
    yield SSE_DONE


@router.post("/query", response_model=None)
async def query(request: Request, body: QueryBody) -> StreamingResponse | JSONResponse:
    """
    Run the query pipeline and stream its events via SSE.

    Settings and the prompt template are checked first, so a bad template id is
    a 404 rather than an error event.
    """
    services = _get_services(request)
    if services is None:
        return _unavailable()
    query_request = body.to_request()
    await services.pipeline.preflight(query_request)
    return StreamingResponse(
        _stream_query(services.pipeline, query_request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/search", response_model=SearchResponse)
async def search_endpoint(request: Request, body: SearchRequest) -> SearchResponse | JSONResponse:
    """Direct BM25 search (no embedding, no generation)."""
    services = _get_services(request)
    if services is None:
        return _unavailable()
    results = services.bm25_index.search(body.query, body.top_k)
    hits = [
        SearchHit(
            document_id=r.document_id,
            chunk_index=r.chunk_index,
            page_number=r.page_number,
            text=r.text,
            score=round(r.score, 4),
        )
        for r in results
    ]
    return SearchResponse(query=body.query, results=hits)


@router.post("/documents", response_model=DocumentIndexResponse, status_code=201)
async def create_document(
    request: Request, body: DocumentCreate
) -> DocumentIndexResponse | JSONResponse:
    """Index a document from already-extracted page text."""
    services = _get_services(request)
    if services is None:
        return _unavailable()
    doc, chunks = await services.documents.index_document(
        body.original_filename,
        _pages(body.pages),
        chunk_strategy=body.chunk_strategy,
        chunk_size=body.chunk_size,
        chunk_overlap=body.chunk_overlap,
    )
    return DocumentIndexResponse(
        document=DocumentOut.model_validate(doc),
        chunks=[ChunkOut.model_validate(c) for c in chunks],
    )


@router.delete("/documents/{document_id}", status_code=204)
async def delete_document(request: Request, document_id: int):
    """Remove a document from the store and from both indexes."""
    services = _get_services(request)
    if services is None:
        return _unavailable()
    await services.documents.remove_document(document_id)
    return None


@router.post("/documents/{document_id}/rechunk", response_model=DocumentIndexResponse)
async def rechunk_document(
    request: Request, document_id: int, body: ChunkParams
) -> DocumentIndexResponse | JSONResponse:
    """Re-chunk and re-index a document with new chunking parameters."""
    services = _get_services(request)
    if services is None:
        return _unavailable()
    doc, chunks = await services.documents.rechunk_document(
        document_id,
        chunk_strategy=body.chunk_strategy,
        chunk_size=body.chunk_size,
        chunk_overlap=body.chunk_overlap,
    )
    return DocumentIndexResponse(
        document=DocumentOut.model_validate(doc),
        chunks=[ChunkOut.model_validate(c) for c in chunks],
    )


@router.post("/chunks/preview", response_model=ChunkPreviewResponse)
async def preview_chunks(
    request: Request, body: ChunkPreviewRequest
) -> ChunkPreviewResponse | JSONResponse:
    """Chunk page text with the given parameters without indexing it."""
    services = _get_services(request)
    if services is None:
        return _unavailable()
    chunks, stats = services.documents.preview_chunks(
        _pages(body.pages),
        chunk_strategy=body.chunk_strategy,
        chunk_size=body.chunk_size,
        chunk_overlap=body.chunk_overlap,
    )
    return ChunkPreviewResponse(
        chunks=[ChunkOut.model_validate(c) for c in chunks],
        stats=ChunkStatsOut.model_validate(stats),
    )


@router.get("/query-logs", response_model=List[QueryLogOut])
async def list_query_logs(
    request: Request,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> List[QueryLogOut] | JSONResponse:
    """Recent query logs, newest first."""
    services = _get_services(request)
    if services is None:
        return _unavailable()
    rows = await services.query_logs.list_recent(limit=limit, offset=offset)
    return [QueryLogOut.model_validate(r) for r in rows]


@router.get("/query-logs/{log_id}", response_model=QueryLogOut)
async def get_query_log(request: Request, log_id: int) -> QueryLogOut | JSONResponse:
    services = _get_services(request)
    if services is None:
        return _unavailable()
    row = await services.query_logs.get(log_id)
    if row is None:
        raise NotFoundError(f"Query log #{log_id} not found")
    return QueryLogOut.model_validate(row)
