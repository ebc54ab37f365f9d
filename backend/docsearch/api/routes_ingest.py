"""Ingest API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from docsearch.api.dependencies import get_ingest_pipeline
from docsearch.ingest.pipeline import IngestPipeline
from docsearch.models.dto import IngestRequest, IngestResponse

router = APIRouter()


@router.post("", response_model=IngestResponse, summary="Ingest files and web pages")
async def trigger_ingest(
    request: IngestRequest,
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> IngestResponse:
    report = await pipeline.ingest_sources(request.targets())
    return IngestResponse(**report.to_dict())
