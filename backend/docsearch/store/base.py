"""Backend-agnostic chunk store contract."""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from docsearch.models.entities import Chunk, ScoredChunk, StoreStats


@runtime_checkable
class ChunkStore(Protocol):
    """Capability set every storage backend exposes.

    ``insert_many`` returns the number of chunks committed. ``search`` returns
    at most ``top_k`` hits ordered by descending similarity and never fails on
    an empty collection. ``count`` and ``has_source`` must answer without
    scanning the whole collection where the backend can avoid it. ``clear``
    removes every chunk.
    """

    backend_name: str

    @property
    def dimensions(self) -> int: ...

    async def insert_many(self, chunks: Sequence[Chunk]) -> int: ...

    async def search(self, query_embedding: Sequence[float], top_k: int) -> list[ScoredChunk]: ...

    async def count(self) -> int: ...

    async def has_source(self, source_id: str) -> bool: ...

    async def stats(self) -> StoreStats: ...

    async def clear(self) -> None: ...

    async def close(self) -> None: ...


__all__ = ["ChunkStore"]
