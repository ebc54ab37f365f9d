"""Shared FastAPI dependencies.

Components are built once by the application lifespan and kept on
``app.state``; these accessors hand them to route handlers.
"""

from __future__ import annotations

from fastapi import Request

from docsearch.ingest.pipeline import IngestPipeline
from docsearch.retrieval import QueryService
from docsearch.store.base import ChunkStore


def get_store(request: Request) -> ChunkStore:
    return request.app.state.store


def get_ingest_pipeline(request: Request) -> IngestPipeline:
    return request.app.state.pipeline


def get_query_service(request: Request) -> QueryService:
    return request.app.state.query_service


__all__ = [
    "get_store",
    "get_ingest_pipeline",
    "get_query_service",
]
