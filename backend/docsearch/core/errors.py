"""Error taxonomy shared by ingestion, storage and query paths."""

from __future__ import annotations


class DocsearchError(Exception):
    """Base class for all docsearch failures."""


class NotFoundError(DocsearchError):
    """A snapshot or collection does not exist."""


class DimensionMismatchError(DocsearchError, ValueError):
    """An embedding width differs from the store's fixed dimension."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Embedding dimension {actual} does not match store dimension {expected}")
        self.expected = expected
        self.actual = actual


class InvalidArgumentError(DocsearchError, ValueError):
    """Caller supplied an unusable argument (bad top_k, empty query)."""


class EmbeddingError(DocsearchError):
    """The embedding gateway could not produce a vector."""


class BackendUnavailableError(DocsearchError):
    """The indexed backend is unreachable or timed out."""


class PartialInsertError(DocsearchError):
    """A batched insert stopped partway; ``inserted`` chunks were committed."""

    def __init__(self, inserted: int, cause: BaseException) -> None:
        super().__init__(f"Insert aborted after {inserted} chunks: {cause}")
        self.inserted = inserted
        self.cause = cause


class UnsupportedFormatError(DocsearchError):
    """No loader is registered for the given file type or URL scheme."""


class SynthesisUnavailableError(DocsearchError):
    """Answer generation was requested but no language model is configured."""


__all__ = [
    "DocsearchError",
    "NotFoundError",
    "DimensionMismatchError",
    "InvalidArgumentError",
    "EmbeddingError",
    "BackendUnavailableError",
    "PartialInsertError",
    "UnsupportedFormatError",
    "SynthesisUnavailableError",
]
