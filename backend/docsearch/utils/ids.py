"""ID helpers."""

from __future__ import annotations

import uuid

_CHUNK_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "docsearch/chunk")


def new_id(prefix: str | None = None) -> str:
    """Generate a random UUID4 string with optional prefix."""
    base = uuid.uuid4().hex
    return f"{prefix}_{base}" if prefix else base


def chunk_point_id(source_id: str, chunk_index: int) -> str:
    """Stable point key for one chunk; the same chunk always maps to the same id."""
    return str(uuid.uuid5(_CHUNK_NAMESPACE, f"{source_id}:{chunk_index}"))
