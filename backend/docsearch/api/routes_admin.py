"""Administrative routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from docsearch.api.dependencies import get_query_service, get_store
from docsearch.core.logging import get_logger
from docsearch.core.metrics import INDEX_SIZE, metrics_response
from docsearch.models.dto import ClearResponse, SourceFile, StatsResponse
from docsearch.retrieval.search import QueryService
from docsearch.store.base import ChunkStore

logger = get_logger(__name__)

router = APIRouter()


@router.get("/stats", response_model=StatsResponse, summary="Describe the active chunk store")
async def get_stats(
    store: ChunkStore = Depends(get_store),
    service: QueryService = Depends(get_query_service),
) -> StatsResponse:
    stats = await store.stats()
    INDEX_SIZE.set(stats.total_chunks)
    return StatsResponse(
        backend=store.backend_name,
        total_chunks=stats.total_chunks,
        total_documents=stats.total_documents,
        dimensions=stats.dimensions,
        model=stats.model,
        created_at=stats.created_at,
        sources=[SourceFile(name=ref.source_id, type=ref.source_type.label) for ref in stats.sources],
        sources_truncated=stats.sources_truncated,
        answer_enabled=service.answer_enabled,
    )


@router.delete("/clear", response_model=ClearResponse, summary="Remove every stored chunk")
async def clear_store(store: ChunkStore = Depends(get_store)) -> ClearResponse:
    await store.clear()
    INDEX_SIZE.set(0)
    logger.info("Cleared %s store", store.backend_name)
    return ClearResponse(success=True, message="Vector store cleared")


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["router"]
