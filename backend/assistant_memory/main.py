from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from assistant_memory.api import memory as memory_api
from assistant_memory.core.config import Settings, get_settings
from assistant_memory.core.logging import setup_logging
from assistant_memory.db.base import create_engine, create_sessionmaker, init_db
from assistant_memory.memory.chunk_store import StoreUnavailableError
from assistant_memory.memory.embedder import EmbeddingProvider, EmbeddingProviderError
from assistant_memory.schemas.memory import ErrorResponse
from assistant_memory.services.memory_service import create_memory_service

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    embedder: Optional[EmbeddingProvider] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = settings or get_settings()
    setup_logging(settings.log_level)

    engine = create_engine(settings.db_url) if settings.has_durable_store else None
    sessionmaker = create_sessionmaker(engine) if engine is not None else None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is not None:
            await init_db(engine)
        yield
        if engine is not None:
            await engine.dispose()

    app = FastAPI(lifespan=lifespan)
    app.state.engine = engine
    app.state.sessionmaker = sessionmaker
    app.state.memory_service = create_memory_service(
        settings=settings, sessionmaker=sessionmaker, embedder=embedder
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(EmbeddingProviderError)
    async def embedding_error_handler(request: Request, exc: EmbeddingProviderError):
        logger.warning("Embedding provider failed on %s: %s", request.url.path, exc)
        return _error_response(status.HTTP_502_BAD_GATEWAY, "embedding_provider_error", str(exc))

    @app.exception_handler(StoreUnavailableError)
    async def store_error_handler(request: Request, exc: StoreUnavailableError):
        logger.warning("Memory store failed on %s: %s", request.url.path, exc)
        return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "store_unavailable", str(exc))

    app.include_router(memory_api.router)

    return app


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    body = ErrorResponse(code=code, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def serve() -> None:
    """Run the API with uvicorn using host/port from settings."""

    settings = get_settings()
    uvicorn.run(
        "assistant_memory.main:create_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
    )
