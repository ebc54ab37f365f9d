"""In-memory chunk store persisted to a single JSON snapshot."""

from __future__ import annotations

import asyncio
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

import orjson

from docsearch.core.errors import DimensionMismatchError, InvalidArgumentError, NotFoundError
from docsearch.core.logging import get_logger
from docsearch.models.entities import Chunk, ScoredChunk, SourceRef, SourceType, StoreStats
from docsearch.store.ranking import cosine_similarity, rank_top_k, validate_top_k
from docsearch.utils.time import from_iso, to_iso, utc_now

logger = get_logger(__name__)

# chunk metadata keys owned by the store; everything else round-trips untouched
_RESERVED_KEYS = ("source", "sourceType", "createdAt")


class FlatFileStore:
    """Exact nearest-neighbour search over chunks held in memory.

    Every mutation rewrites the whole snapshot, so the store is meant for
    corpora that comfortably fit in memory. Mutations are serialized through
    one lock; searches read the current collection without locking because
    mutations swap in a new list only after the snapshot is on disk.
    """

    backend_name = "flat_file"

    def __init__(
        self,
        path: Path,
        dimensions: int,
        model: str,
        created_at: datetime | None = None,
        chunks: Sequence[Chunk] | None = None,
    ) -> None:
        self.path = Path(path).expanduser()
        self._dimensions = dimensions
        self.model = model
        self.created_at = created_at
        self._chunks: list[Chunk] = list(chunks or [])
        self._write_lock = asyncio.Lock()

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @classmethod
    def load(cls, path: Path) -> "FlatFileStore":
        """Read a snapshot from disk; raise ``NotFoundError`` when there is none."""
        path = Path(path).expanduser()
        if not path.exists():
            raise NotFoundError(f"Vector store not found at: {path}")
        data = orjson.loads(path.read_bytes())
        meta = data.get("metadata") or {}
        chunks = [_chunk_from_record(record) for record in data.get("embeddings") or []]
        dimensions = int(meta.get("dimensions") or (chunks[0].dimensions if chunks else 0))
        for chunk in chunks:
            if chunk.dimensions != dimensions:
                raise DimensionMismatchError(dimensions, chunk.dimensions)
        store = cls(
            path=path,
            dimensions=dimensions,
            model=str(meta.get("model") or ""),
            created_at=from_iso(meta.get("createdAt")) if meta.get("createdAt") else None,
            chunks=chunks,
        )
        logger.info(
            "Loaded vector store %s: %s chunks, %s dimensions, model %s",
            path,
            len(chunks),
            dimensions,
            store.model,
        )
        return store

    @classmethod
    def open(cls, path: Path, dimensions: int, model: str) -> "FlatFileStore":
        """Load an existing snapshot, or start an empty store written on first insert."""
        try:
            store = cls.load(path)
        except NotFoundError:
            logger.info("No snapshot at %s; starting an empty store", path)
            return cls(path=path, dimensions=dimensions, model=model)
        if store._chunks and store.dimensions != dimensions:
            raise DimensionMismatchError(dimensions, store.dimensions)
        store._dimensions = dimensions
        store.model = store.model or model
        return store

    async def insert_many(self, chunks: Sequence[Chunk]) -> int:
        if not chunks:
            return 0
        for chunk in chunks:
            if chunk.dimensions != self._dimensions:
                raise DimensionMismatchError(self._dimensions, chunk.dimensions)
        async with self._write_lock:
            existing = {chunk.key for chunk in self._chunks}
            for chunk in chunks:
                if chunk.key in existing:
                    raise InvalidArgumentError(
                        f"Chunk {chunk.chunk_index} of '{chunk.source_id}' is already stored"
                    )
                existing.add(chunk.key)
            updated = [*self._chunks, *chunks]
            created_at = self.created_at or utc_now()
            await asyncio.to_thread(self._write_snapshot, updated, created_at)
            self._chunks = updated
            self.created_at = created_at
        logger.debug("Stored %s chunks (total %s)", len(chunks), len(updated))
        return len(chunks)

    async def search(self, query_embedding: Sequence[float], top_k: int) -> list[ScoredChunk]:
        validate_top_k(top_k)
        chunks = self._chunks
        if not chunks:
            return []
        if len(query_embedding) != self._dimensions:
            raise DimensionMismatchError(self._dimensions, len(query_embedding))
        scored = (
            ScoredChunk(chunk=chunk, similarity=cosine_similarity(query_embedding, chunk.embedding))
            for chunk in chunks
        )
        return rank_top_k(scored, top_k)

    async def count(self) -> int:
        return len(self._chunks)

    async def has_source(self, source_id: str) -> bool:
        return any(chunk.source_id == source_id for chunk in self._chunks)

    async def stats(self) -> StoreStats:
        chunks = self._chunks
        return StoreStats(
            total_chunks=len(chunks),
            dimensions=self._dimensions,
            model=self.model,
            created_at=self.created_at,
            sources=_source_registry(chunks),
        )

    async def clear(self) -> None:
        async with self._write_lock:
            created_at = self.created_at or utc_now()
            await asyncio.to_thread(self._write_snapshot, [], created_at)
            self._chunks = []
            self.created_at = created_at
        logger.info("Cleared vector store %s", self.path)

    async def close(self) -> None:
        return None

    def chunks(self) -> list[Chunk]:
        """Snapshot of the stored chunks in insertion order."""
        return list(self._chunks)

    def _write_snapshot(self, chunks: Sequence[Chunk], created_at: datetime) -> None:
        payload = {
            "embeddings": [_chunk_to_record(chunk) for chunk in chunks],
            "metadata": {
                "totalChunks": len(chunks),
                "dimensions": self._dimensions,
                "model": self.model,
                "createdAt": to_iso(created_at),
                "sourceFiles": [
                    {"name": ref.source_id, "type": ref.source_type.label} for ref in _source_registry(chunks)
                ],
            },
        }
        data = orjson.dumps(payload)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def _source_registry(chunks: Sequence[Chunk]) -> list[SourceRef]:
    seen: dict[tuple[str, str], SourceRef] = {}
    for chunk in chunks:
        key = (chunk.source_id, chunk.source_type.label)
        if key not in seen:
            seen[key] = SourceRef(source_id=chunk.source_id, source_type=chunk.source_type)
    return list(seen.values())


def _chunk_to_record(chunk: Chunk) -> dict[str, Any]:
    metadata = {key: value for key, value in chunk.metadata.items() if key not in _RESERVED_KEYS}
    metadata.update(
        {
            "source": chunk.source_id,
            "sourceType": chunk.source_type.label,
            "createdAt": to_iso(chunk.created_at),
        }
    )
    return {
        "content": chunk.content,
        "embedding": list(chunk.embedding),
        "metadata": metadata,
        "chunkIndex": chunk.chunk_index,
    }


def _chunk_from_record(record: dict[str, Any]) -> Chunk:
    metadata = dict(record.get("metadata") or {})
    source_id = metadata.pop("source", None) or metadata.get("originalName") or "unknown"
    source_type = SourceType.parse(str(metadata.pop("sourceType", None) or "file"))
    created_at = from_iso(metadata.pop("createdAt", None) or metadata.get("uploadedAt"))
    return Chunk(
        content=record["content"],
        embedding=tuple(float(value) for value in record["embedding"]),
        source_id=str(source_id),
        source_type=source_type,
        chunk_index=int(record.get("chunkIndex") or 0),
        created_at=created_at,
        metadata=metadata,
    )


__all__ = ["FlatFileStore"]
