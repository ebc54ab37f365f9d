"""Internal dataclasses representing stored entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Sequence


class SourceOrigin(str, Enum):
    FILE = "file"
    URL = "url"


class SourceKind(str, Enum):
    PDF = "pdf"
    CSV = "csv"
    JSON = "json"
    TEXT = "text"
    WEBPAGE = "webpage"


@dataclass(frozen=True, slots=True)
class SourceType:
    """Where a source came from and what format it was parsed as."""

    origin: SourceOrigin
    kind: SourceKind

    @property
    def label(self) -> str:
        return f"{self.origin.value}/{self.kind.value}"

    @classmethod
    def parse(cls, value: str) -> "SourceType":
        """Inverse of ``label``; a bare origin defaults to text/webpage."""
        origin, _, kind = value.partition("/")
        source_origin = SourceOrigin(origin)
        if not kind:
            kind = SourceKind.WEBPAGE.value if source_origin is SourceOrigin.URL else SourceKind.TEXT.value
        return cls(origin=source_origin, kind=SourceKind(kind))


@dataclass(frozen=True, slots=True)
class Chunk:
    """A retrievable passage with its embedding and provenance.

    Instances are immutable once built; the embedding is stored as a tuple so
    callers cannot mutate a stored vector in place.
    """

    content: str
    embedding: tuple[float, ...]
    source_id: str
    source_type: SourceType
    chunk_index: int
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.content:
            raise ValueError("Chunk content must be non-empty")
        if self.chunk_index < 0:
            raise ValueError("chunk_index must be zero or positive")
        if not isinstance(self.embedding, tuple):
            object.__setattr__(self, "embedding", tuple(float(value) for value in self.embedding))

    @property
    def dimensions(self) -> int:
        return len(self.embedding)

    @property
    def key(self) -> tuple[str, int]:
        return (self.source_id, self.chunk_index)


@dataclass(frozen=True, slots=True)
class ScoredChunk:
    """A search hit. ``distance`` is set only by distance-metric backends."""

    chunk: Chunk
    similarity: float
    distance: float | None = None


@dataclass(frozen=True, slots=True)
class SourceRef:
    source_id: str
    source_type: SourceType


@dataclass(slots=True)
class StoreStats:
    """Aggregate description of a chunk collection.

    ``sources_truncated`` is set when the source registry was derived from a
    bounded scan, in which case ``total_documents`` is a lower bound.
    """

    total_chunks: int
    dimensions: int
    model: str
    created_at: datetime | None
    sources: Sequence[SourceRef] = ()
    sources_truncated: bool = False

    @property
    def total_documents(self) -> int:
        return len({ref.source_id for ref in self.sources})

    @property
    def is_empty(self) -> bool:
        return self.total_chunks == 0


__all__ = [
    "SourceOrigin",
    "SourceKind",
    "SourceType",
    "Chunk",
    "ScoredChunk",
    "SourceRef",
    "StoreStats",
]
