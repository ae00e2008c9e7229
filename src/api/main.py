"""
FastAPI application for the RAG API.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.common.errors import CollaboratorError, NotFoundError, ValidationError

from .deps import Services, build_services, start_services
from .routes import router

logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the app. When `services` is given (tests), it is used as-is and no
    startup work runs.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build services and rebuild indexes on startup; drop them on shutdown."""
        if services is not None:
            app.state.services = services
        else:
            built = build_services()
            if built is not None:
                await start_services(built)
            app.state.services = built
        yield
        app.state.services = None

    app = FastAPI(
        title="ProRAG API",
        description="Hybrid retrieval (BM25 + vector) and streamed RAG answers",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(CollaboratorError)
    async def collaborator_handler(request: Request, exc: CollaboratorError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    app.include_router(router)
    return app


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
