"""Select and construct the configured chunk store."""

from __future__ import annotations

from docsearch.core.config import Settings
from docsearch.core.logging import get_logger
from docsearch.store.base import ChunkStore
from docsearch.store.flat_file import FlatFileStore
from docsearch.store.qdrant_store import QdrantChunkStore

logger = get_logger(__name__)


def build_store(settings: Settings, model_name: str, dimensions: int) -> ChunkStore:
    """Build the backend named by ``settings.store_backend``.

    Called once at startup; the returned store is owned by the caller and
    shared by ingestion and queries for the life of the process.
    """
    if settings.store_backend == "qdrant":
        logger.info("Using Qdrant backend (collection %s)", settings.qdrant_collection)
        return QdrantChunkStore.from_settings(settings, model=model_name, dimensions=dimensions)
    logger.info("Using flat-file backend at %s", settings.snapshot_path)
    return FlatFileStore.open(settings.snapshot_path, dimensions=dimensions, model=model_name)


__all__ = ["build_store"]
