"""Embedding models and the gateway the pipeline and query path call."""

from __future__ import annotations

import asyncio
import hashlib
import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Protocol, Sequence

from docsearch.core.errors import EmbeddingError
from docsearch.core.logging import get_logger

if TYPE_CHECKING:
    from docsearch.core.config import Settings

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")


@dataclass(slots=True)
class EmbeddingBatch:
    vectors: list[list[float]]
    model: str
    dim: int
    backend: str


class EmbeddingModel(Protocol):
    model_name: str

    @property
    def dim(self) -> int: ...

    @property
    def backend(self) -> str: ...

    def encode(self, texts: Iterable[str], batch_size: int = 16) -> EmbeddingBatch: ...


class HashedEmbeddingModel:
    """Lightweight hashed bag-of-words model with deterministic, unit-length output."""

    def __init__(self, model_name: str = "hashed", dim: int = 384) -> None:
        self.model_name = model_name
        self._dim = dim
        self._backend = "hashed"

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def backend(self) -> str:
        return self._backend

    def encode(self, texts: Iterable[str], batch_size: int = 16) -> EmbeddingBatch:
        vectors: list[list[float]] = []
        for text in texts:
            tokens = _tokenize(text)
            vector = [0.0] * self._dim
            for token in tokens:
                slot = _hash_token(token, self._dim)
                vector[slot] += 1.0
            _normalize(vector)
            vectors.append(vector)
        return EmbeddingBatch(vectors=vectors, model=self.model_name, dim=self._dim, backend=self._backend)


class SentenceTransformerEmbeddingModel:
    """Local transformer encoder producing L2-normalized mean-pooled vectors."""

    def __init__(self, model_name: str, device: str | None = None) -> None:
        from sentence_transformers import SentenceTransformer

        self.model_name = model_name
        self._model = SentenceTransformer(model_name, device=device)
        self._dim = int(self._model.get_sentence_embedding_dimension())
        self._backend = "sentence_transformers"
        logger.info("Loaded embedding model %s (dim=%s)", model_name, self._dim)

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def backend(self) -> str:
        return self._backend

    def encode(self, texts: Iterable[str], batch_size: int = 16) -> EmbeddingBatch:
        inputs = list(texts)
        array = self._model.encode(
            inputs,
            batch_size=batch_size,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        vectors = [[float(value) for value in row] for row in array]
        return EmbeddingBatch(vectors=vectors, model=self.model_name, dim=self._dim, backend=self._backend)


class EmbeddingGateway:
    """Turns text into fixed-width vectors without blocking the event loop.

    The gateway owns its model; build it once at startup and pass it to the
    ingest pipeline and the query service.
    """

    def __init__(self, model: EmbeddingModel) -> None:
        self.model = model

    @property
    def dim(self) -> int:
        return self.model.dim

    @property
    def model_name(self) -> str:
        return self.model.model_name

    async def embed(self, text: str) -> list[float]:
        if not isinstance(text, str) or not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        vectors = await self._encode([text])
        return vectors[0]

    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts one at a time, in order; any failure aborts the whole call."""
        vectors: list[list[float]] = []
        for text in texts:
            vectors.append(await self.embed(text))
        return vectors

    async def _encode(self, texts: list[str]) -> list[list[float]]:
        try:
            batch = await asyncio.to_thread(self.model.encode, texts)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"Embedding model '{self.model_name}' failed: {exc}") from exc
        for vector in batch.vectors:
            if len(vector) != self.dim:
                raise EmbeddingError(f"Model returned {len(vector)} dimensions, expected {self.dim}")
        return batch.vectors


def build_embedding_model(settings: "Settings") -> EmbeddingModel:
    """Instantiate the configured embedding model."""
    if settings.embedding_backend == "sentence_transformers":
        return SentenceTransformerEmbeddingModel(settings.embedding_model)
    return HashedEmbeddingModel(model_name=f"hashed-{settings.embedding_dim}", dim=settings.embedding_dim)


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingBatch",
    "EmbeddingModel",
    "HashedEmbeddingModel",
    "SentenceTransformerEmbeddingModel",
    "EmbeddingGateway",
    "build_embedding_model",
]
