"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from docsearch.models.entities import SourceType


@dataclass(slots=True)
class LoadedDocument:
    """Represents one unit of text extracted from a source (page, row, item)."""

    text: str
    source_id: str
    source_type: SourceType
    metadata: dict[str, Any] = field(default_factory=dict)
    title: str | None = None


@dataclass(slots=True)
class IngestStats:
    """Aggregated ingest statistics."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0
    chunks: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "chunks": self.chunks,
        }


@dataclass(slots=True)
class IngestResult:
    """Outcome for a single ingested path or URL."""

    source_id: str
    status: str
    source_type: str | None = None
    chunks: int = 0
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "status": self.status,
            "source_type": self.source_type,
            "chunks": self.chunks,
            "detail": self.detail,
        }


@dataclass(slots=True)
class IngestReport:
    job_id: str
    stats: IngestStats
    results: list[IngestResult]

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "stats": self.stats.to_dict(),
            "results": [result.to_dict() for result in self.results],
        }


__all__ = [
    "LoadedDocument",
    "IngestStats",
    "IngestResult",
    "IngestReport",
]
