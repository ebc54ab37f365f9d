"""Chunk storage backends."""

from .base import ChunkStore
from .factory import build_store
from .flat_file import FlatFileStore
from .qdrant_store import QdrantChunkStore
from .ranking import cosine_similarity, distance_to_similarity, rank_top_k

__all__ = [
    "ChunkStore",
    "build_store",
    "FlatFileStore",
    "QdrantChunkStore",
    "cosine_similarity",
    "distance_to_similarity",
    "rank_top_k",
]
