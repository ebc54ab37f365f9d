"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


class IngestRequest(BaseModel):
    paths: list[str] | None = Field(default=None, description="Filesystem paths to ingest")
    urls: list[str] | None = Field(default=None, description="Web pages to fetch and ingest")

    @model_validator(mode="after")
    def _require_target(self) -> "IngestRequest":
        if not self.paths and not self.urls:
            raise ValueError("Provide at least one path or URL")
        return self

    def targets(self) -> list[str]:
        return [*(self.paths or []), *(self.urls or [])]


class IngestResponse(BaseModel):
    job_id: str
    stats: dict[str, int]
    results: list[dict[str, Any]]


class QueryRequest(BaseModel):
    query: str = Field(min_length=1)
    k: int | None = Field(default=None, ge=1, le=100)


class ChunkResult(BaseModel):
    content: str
    source: str
    source_type: str
    chunk_index: int
    page: int | None = None
    similarity: float
    distance: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class QueryResponse(BaseModel):
    query: str
    status: Literal["ok", "empty"]
    message: str | None = None
    answer: str | None = None
    model: str | None = None
    results: list[ChunkResult]


class SourceFile(BaseModel):
    name: str
    type: str


class StatsResponse(BaseModel):
    backend: str
    total_chunks: int
    total_documents: int
    dimensions: int
    model: str
    created_at: datetime | None = None
    sources: list[SourceFile]
    sources_truncated: bool = False
    answer_enabled: bool = False


class ClearResponse(BaseModel):
    success: bool
    message: str


__all__ = [
    "IngestRequest",
    "IngestResponse",
    "QueryRequest",
    "QueryResponse",
    "ChunkResult",
    "SourceFile",
    "StatsResponse",
    "ClearResponse",
]
