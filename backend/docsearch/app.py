"""FastAPI application setup for docsearch."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docsearch.api.routes_admin import router as admin_router
from docsearch.api.routes_ingest import router as ingest_router
from docsearch.api.routes_query import router as query_router
from docsearch.core.config import Settings, get_settings
from docsearch.core.errors import (
    BackendUnavailableError,
    DimensionMismatchError,
    DocsearchError,
    EmbeddingError,
    InvalidArgumentError,
    NotFoundError,
    PartialInsertError,
    SynthesisUnavailableError,
    UnsupportedFormatError,
)
from docsearch.core.logging import configure_logging, get_logger
from docsearch.core.metrics import REQUEST_COUNT, REQUEST_LATENCY
from docsearch.ingest.embeddings import EmbeddingGateway, build_embedding_model
from docsearch.ingest.loaders import LoaderRegistry, WebPageLoader
from docsearch.ingest.pipeline import IngestPipeline
from docsearch.retrieval import AnswerSynthesizer, QueryService
from docsearch.store.factory import build_store

logger = get_logger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[DocsearchError], int], ...] = (
    (DimensionMismatchError, 400),
    (InvalidArgumentError, 400),
    (SynthesisUnavailableError, 400),
    (NotFoundError, 404),
    (UnsupportedFormatError, 415),
    (PartialInsertError, 502),
    (BackendUnavailableError, 503),
    (EmbeddingError, 500),
)


def create_app(
    settings: Settings | None = None,
    synthesizer: AnswerSynthesizer | None = None,
) -> FastAPI:
    """Build the application; components are created by the lifespan hook."""
    app_settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        gateway = EmbeddingGateway(build_embedding_model(app_settings))
        store = build_store(app_settings, model_name=gateway.model_name, dimensions=gateway.dim)
        answerer = synthesizer or AnswerSynthesizer.from_settings(app_settings)
        app.state.settings = app_settings
        app.state.gateway = gateway
        app.state.store = store
        app.state.pipeline = IngestPipeline(
            store,
            gateway,
            app_settings,
            LoaderRegistry(WebPageLoader(timeout=app_settings.web_timeout_s)),
        )
        app.state.query_service = QueryService(store, gateway, app_settings, synthesizer=answerer)
        logger.info("docsearch ready: backend=%s model=%s dim=%s", store.backend_name, gateway.model_name, gateway.dim)
        try:
            yield
        finally:
            await store.close()
            if answerer is not None:
                await answerer.close()

    app = FastAPI(
        title="docsearch",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://127.0.0.1:5173",
            "http://localhost:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        REQUEST_LATENCY.labels(endpoint=endpoint, method=request.method).observe(time.perf_counter() - start)
        REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status=str(response.status_code)).inc()
        return response

    @app.exception_handler(DocsearchError)
    async def handle_docsearch_error(request: Request, exc: DocsearchError) -> JSONResponse:
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        body: dict[str, object] = {"error": str(exc), "type": type(exc).__name__}
        if isinstance(exc, PartialInsertError):
            body["inserted"] = exc.inserted
        return JSONResponse(status_code=status_code, content=body)

    app.include_router(ingest_router, prefix="/ingest", tags=["ingest"])
    app.include_router(query_router, prefix="", tags=["query"])
    app.include_router(admin_router, prefix="", tags=["admin"])

    @app.get("/health", tags=["admin"])
    def health() -> dict[str, bool]:
        """Simple liveness check."""
        return {"ok": True}

    return app


def _status_for(exc: DocsearchError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def build_default_app() -> FastAPI:
    """Uvicorn factory: configure logging from settings and build the app."""
    settings = get_settings()
    configure_logging(settings.log_level, use_json=settings.log_json)
    return create_app(settings)


__all__ = ["create_app", "build_default_app"]
