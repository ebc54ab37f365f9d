"""Similarity scoring and the ranking contract shared by every backend."""

from __future__ import annotations

import heapq
import math
from typing import Iterable, Sequence

from docsearch.core.errors import InvalidArgumentError
from docsearch.models.entities import ScoredChunk


def validate_top_k(top_k: int) -> int:
    if isinstance(top_k, bool) or not isinstance(top_k, int):
        raise InvalidArgumentError("top_k must be an integer")
    if top_k <= 0:
        raise InvalidArgumentError(f"top_k must be positive, got {top_k}")
    return top_k


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between ``a`` and ``b``; 0.0 if either has zero magnitude."""
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def distance_to_similarity(distance: float) -> float:
    """Map an unbounded non-negative distance onto (0, 1], preserving rank order."""
    return 1.0 / (1.0 + max(0.0, float(distance)))


def rank_top_k(scored: Iterable[ScoredChunk], top_k: int) -> list[ScoredChunk]:
    """Highest similarity first; equal scores keep their input order."""
    validate_top_k(top_k)
    indexed = ((-item.similarity, position, item) for position, item in enumerate(scored))
    return [item for _, _, item in heapq.nsmallest(top_k, indexed, key=lambda entry: (entry[0], entry[1]))]


__all__ = ["validate_top_k", "cosine_similarity", "distance_to_similarity", "rank_top_k"]
