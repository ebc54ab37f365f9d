"""Chunk store backed by a Qdrant collection."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence, TypeVar

from qdrant_client import AsyncQdrantClient, models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from docsearch.core.errors import (
    BackendUnavailableError,
    DimensionMismatchError,
    NotFoundError,
    PartialInsertError,
)
from docsearch.core.logging import get_logger, log_context
from docsearch.models.entities import Chunk, ScoredChunk, SourceRef, SourceType, StoreStats
from docsearch.store.ranking import distance_to_similarity, rank_top_k, validate_top_k
from docsearch.utils.ids import chunk_point_id
from docsearch.utils.time import from_iso, to_iso

if TYPE_CHECKING:
    from docsearch.core.config import Settings

logger = get_logger(__name__)

T = TypeVar("T")

_PAYLOAD_KEYWORD_FIELDS = ("source_id", "source_type")
_SCAN_PAGE_SIZE = 1000
_MAX_BACKOFF_S = 30.0


class QdrantChunkStore:
    """Approximate nearest-neighbour search delegated to Qdrant.

    Vectors are compared with Euclidean distance; hits are reported with
    ``similarity = 1 / (1 + distance)`` so scores line up with the flat-file
    backend on a rough [0, 1] scale. The client and the collection are both
    created lazily on first use and reused afterwards.
    """

    backend_name = "qdrant"

    def __init__(
        self,
        collection_name: str,
        dimensions: int,
        model: str,
        *,
        url: str | None = None,
        api_key: str | None = None,
        location: str | None = None,
        insert_batch_size: int = 100,
        insert_timeout: float = 60.0,
        search_timeout: float = 30.0,
        inter_batch_delay: float = 0.5,
        rate_limit_retries: int = 3,
        rate_limit_backoff: float = 1.0,
        stats_scan_limit: int = 16384,
        client_factory: Callable[[], AsyncQdrantClient] | None = None,
    ) -> None:
        if insert_batch_size <= 0:
            raise ValueError("insert_batch_size must be positive")
        self.collection_name = collection_name
        self._dimensions = dimensions
        self.model = model
        self.insert_batch_size = insert_batch_size
        self.insert_timeout = insert_timeout
        self.search_timeout = search_timeout
        self.inter_batch_delay = inter_batch_delay
        self.rate_limit_retries = rate_limit_retries
        self.rate_limit_backoff = rate_limit_backoff
        self.stats_scan_limit = stats_scan_limit
        self._url = url
        self._api_key = api_key
        self._location = location if (location or url) else ":memory:"
        self._is_local = not url
        self._client_factory = client_factory or self._default_client
        self._client: AsyncQdrantClient | None = None
        self._client_lock = asyncio.Lock()
        self._collection_lock = asyncio.Lock()
        self._collection_ready = False

    @classmethod
    def from_settings(cls, settings: "Settings", model: str, dimensions: int) -> "QdrantChunkStore":
        return cls(
            collection_name=settings.qdrant_collection,
            dimensions=dimensions,
            model=model,
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
            location=settings.qdrant_location,
            insert_batch_size=settings.insert_batch_size,
            insert_timeout=settings.insert_timeout_s,
            search_timeout=settings.search_timeout_s,
            inter_batch_delay=settings.inter_batch_delay_s,
            rate_limit_retries=settings.rate_limit_retries,
            rate_limit_backoff=settings.rate_limit_backoff_s,
            stats_scan_limit=settings.stats_scan_limit,
        )

    @property
    def dimensions(self) -> int:
        return self._dimensions

    # Collection lifecycle ----------------------------------------------

    async def ensure_collection(self, dimension: int | None = None) -> None:
        """Create the collection if it does not exist; a no-op once done."""
        if self._collection_ready:
            return
        dimension = dimension or self._dimensions
        async with self._collection_lock:
            if self._collection_ready:
                return
            if await self._collection_exists():
                info = await self._call(
                    lambda client: client.get_collection(collection_name=self.collection_name),
                    self.search_timeout,
                )
                existing = _vector_size(info)
                if existing is not None and existing != dimension:
                    raise DimensionMismatchError(dimension, existing)
                logger.info("Collection %s already exists", self.collection_name)
            else:
                await self._create_collection(dimension)
            self._collection_ready = True

    async def _create_collection(self, dimension: int) -> None:
        logger.info("Creating collection %s (dim=%s)", self.collection_name, dimension)
        await self._call(
            lambda client: client.create_collection(
                collection_name=self.collection_name,
                vectors_config=models.VectorParams(size=dimension, distance=models.Distance.EUCLID),
                hnsw_config=models.HnswConfigDiff(m=16, ef_construct=100),
            ),
            self.insert_timeout,
        )
        if self._is_local:
            return
        for field_name in _PAYLOAD_KEYWORD_FIELDS:
            await self._call(
                lambda client, name=field_name: client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name=name,
                    field_schema=models.PayloadSchemaType.KEYWORD,
                ),
                self.insert_timeout,
            )

    async def _collection_exists(self) -> bool:
        return await self._call(
            lambda client: client.collection_exists(collection_name=self.collection_name),
            self.search_timeout,
        )

    async def _ensure_queryable(self) -> None:
        """Make sure the collection can serve searches, nudging it once if not."""
        info = await self._call(
            lambda client: client.get_collection(collection_name=self.collection_name),
            self.search_timeout,
        )
        if info.status in (models.CollectionStatus.GREEN, models.CollectionStatus.YELLOW):
            return
        logger.warning("Collection %s is %s; triggering optimizers", self.collection_name, info.status)
        await self._call(
            lambda client: client.update_collection(
                collection_name=self.collection_name,
                optimizers_config=models.OptimizersConfigDiff(),
            ),
            self.search_timeout,
        )
        info = await self._call(
            lambda client: client.get_collection(collection_name=self.collection_name),
            self.search_timeout,
        )
        if info.status == models.CollectionStatus.RED:
            raise BackendUnavailableError(f"Collection {self.collection_name} is not queryable")

    # ChunkStore API ----------------------------------------------------

    async def insert_many(self, chunks: Sequence[Chunk]) -> int:
        if not chunks:
            return 0
        for chunk in chunks:
            if chunk.dimensions != self._dimensions:
                raise DimensionMismatchError(self._dimensions, chunk.dimensions)
        await self.ensure_collection(self._dimensions)

        batches = [
            chunks[start : start + self.insert_batch_size]
            for start in range(0, len(chunks), self.insert_batch_size)
        ]
        inserted = 0
        for number, batch in enumerate(batches, start=1):
            points = [_chunk_to_point(chunk) for chunk in batch]
            try:
                await self._call(
                    lambda client, points=points: client.upsert(
                        collection_name=self.collection_name,
                        points=points,
                        wait=True,
                    ),
                    self.insert_timeout,
                )
            except Exception as exc:
                logger.error(
                    "Batch %s/%s failed after %s chunks were inserted: %s",
                    number,
                    len(batches),
                    inserted,
                    exc,
                    extra=log_context(collection=self.collection_name, batch=number, inserted=inserted),
                )
                raise PartialInsertError(inserted, exc) from exc
            inserted += len(batch)
            logger.debug("Inserted batch %s/%s (%s chunks)", number, len(batches), len(batch))
            if number < len(batches) and self.inter_batch_delay > 0:
                await asyncio.sleep(self.inter_batch_delay)
        logger.info("Inserted %s chunks into %s", inserted, self.collection_name)
        return inserted

    async def search(self, query_embedding: Sequence[float], top_k: int) -> list[ScoredChunk]:
        validate_top_k(top_k)
        if len(query_embedding) != self._dimensions:
            raise DimensionMismatchError(self._dimensions, len(query_embedding))
        if not await self._collection_exists():
            return []
        await self._ensure_queryable()
        vector = [float(value) for value in query_embedding]
        response = await self._call(
            lambda client: client.query_points(
                collection_name=self.collection_name,
                query=vector,
                limit=top_k,
                with_payload=True,
                with_vectors=True,
            ),
            self.search_timeout,
        )
        hits: list[ScoredChunk] = []
        for point in response.points:
            distance = abs(float(point.score))
            hits.append(
                ScoredChunk(
                    chunk=_point_to_chunk(point.payload or {}, point.vector),
                    similarity=distance_to_similarity(distance),
                    distance=distance,
                )
            )
        return rank_top_k(hits, top_k)

    async def count(self, source_id: str | None = None) -> int:
        """Exact point count, optionally restricted to one source."""
        if not await self._collection_exists():
            return 0
        count_filter = None
        if source_id is not None:
            count_filter = models.Filter(
                must=[models.FieldCondition(key="source_id", match=models.MatchValue(value=source_id))]
            )
        counted = await self._call(
            lambda client: client.count(
                collection_name=self.collection_name,
                count_filter=count_filter,
                exact=True,
            ),
            self.search_timeout,
        )
        return int(counted.count)

    async def has_source(self, source_id: str) -> bool:
        return await self.count(source_id) > 0

    async def stats(self) -> StoreStats:
        """Collection statistics.

        The backend keeps no per-source aggregate, so the source registry is
        rebuilt by scanning at most ``stats_scan_limit`` points. When more
        points exist, ``sources_truncated`` is set and the document count is a
        lower bound.
        """
        if not await self._collection_exists():
            return StoreStats(total_chunks=0, dimensions=self._dimensions, model=self.model, created_at=None)
        total_chunks = await self.count()
        sources: dict[tuple[str, str], SourceRef] = {}
        earliest: datetime | None = None
        scanned = 0
        offset: Any = None
        truncated = False
        while True:
            page_size = min(_SCAN_PAGE_SIZE, self.stats_scan_limit - scanned)
            records, offset = await self._call(
                lambda client, limit=page_size, start=offset: client.scroll(
                    collection_name=self.collection_name,
                    limit=limit,
                    offset=start,
                    with_payload=["source_id", "source_type", "created_at"],
                    with_vectors=False,
                ),
                self.search_timeout,
            )
            for record in records:
                payload = record.payload or {}
                source_type = SourceType.parse(str(payload.get("source_type") or "file"))
                source_id = str(payload.get("source_id") or "unknown")
                sources.setdefault((source_id, source_type.label), SourceRef(source_id, source_type))
                if payload.get("created_at"):
                    created = from_iso(payload["created_at"])
                    earliest = created if earliest is None or created < earliest else earliest
            scanned += len(records)
            if offset is None or not records:
                break
            if scanned >= self.stats_scan_limit:
                truncated = True
                break
        if truncated:
            logger.warning(
                "Source registry for %s truncated at %s rows; document count is a lower bound",
                self.collection_name,
                self.stats_scan_limit,
            )
        return StoreStats(
            total_chunks=total_chunks,
            dimensions=self._dimensions,
            model=self.model,
            created_at=earliest,
            sources=list(sources.values()),
            sources_truncated=truncated,
        )

    async def clear(self) -> None:
        """Drop the collection and recreate it empty with the same schema."""
        async with self._collection_lock:
            if await self._collection_exists():
                logger.info("Dropping collection %s", self.collection_name)
                await self._call(
                    lambda client: client.delete_collection(collection_name=self.collection_name),
                    self.insert_timeout,
                )
            await self._create_collection(self._dimensions)
            self._collection_ready = True

    async def close(self) -> None:
        async with self._client_lock:
            if self._client is not None:
                await self._client.close()
                self._client = None

    # Connection handling ----------------------------------------------

    def _default_client(self) -> AsyncQdrantClient:
        if self._url:
            return AsyncQdrantClient(url=self._url, api_key=self._api_key, timeout=int(self.insert_timeout))
        return AsyncQdrantClient(location=self._location)

    async def _get_client(self) -> AsyncQdrantClient:
        if self._client is not None:
            return self._client
        async with self._client_lock:
            if self._client is None:
                target = self._url or self._location
                logger.info("Connecting to Qdrant at %s", target)
                self._client = self._client_factory()
        return self._client

    async def _reset_client(self) -> None:
        async with self._client_lock:
            stale, self._client = self._client, None
        if stale is not None:
            try:
                await stale.close()
            except Exception as exc:  # closing a broken connection may fail again
                logger.debug("Ignoring error while closing Qdrant client: %s", exc)

    async def _call(self, operation: Callable[[AsyncQdrantClient], Awaitable[T]], timeout: float) -> T:
        """Run one remote call with a timeout, rate-limit backoff and one reconnect."""
        for attempt in (1, 2):
            client = await self._get_client()
            try:
                return await self._with_backoff(operation, client, timeout)
            except UnexpectedResponse as exc:
                if exc.status_code == 404:
                    raise NotFoundError(f"Collection {self.collection_name} not found") from exc
                if _is_rate_limited(exc) or exc.status_code is None or exc.status_code < 500:
                    raise BackendUnavailableError(f"Qdrant rejected request: {exc}") from exc
                failure: Exception = exc
            except (ResponseHandlingException, ConnectionError, TimeoutError, asyncio.TimeoutError) as exc:
                failure = exc
            except Exception as exc:
                if _is_rate_limited(exc):
                    raise BackendUnavailableError(f"Qdrant rate limit persisted: {exc}") from exc
                raise
            if attempt == 1 and not self._is_local:
                logger.warning("Qdrant call failed (%s); retrying with a fresh connection", failure)
                await self._reset_client()
                continue
            raise BackendUnavailableError(f"Qdrant unavailable: {failure}") from failure
        raise BackendUnavailableError("Qdrant unavailable")  # pragma: no cover - loop always returns or raises

    async def _with_backoff(
        self,
        operation: Callable[[AsyncQdrantClient], Awaitable[T]],
        client: AsyncQdrantClient,
        timeout: float,
    ) -> T:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_rate_limited),
            stop=stop_after_attempt(self.rate_limit_retries),
            wait=wait_exponential_jitter(
                initial=self.rate_limit_backoff, max=_MAX_BACKOFF_S, jitter=self.rate_limit_backoff
            ),
            reraise=True,
        ):
            with attempt:
                return await asyncio.wait_for(operation(client), timeout)
        raise BackendUnavailableError("Qdrant retry loop exited without a result")  # pragma: no cover


def _is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, UnexpectedResponse):
        return exc.status_code == 429
    # newer clients raise a dedicated exhaustion error carrying retry_after_s
    return getattr(exc, "retry_after_s", None) is not None


def _vector_size(info: models.CollectionInfo) -> int | None:
    vectors = info.config.params.vectors
    if isinstance(vectors, models.VectorParams):
        return vectors.size
    return None


def _chunk_to_point(chunk: Chunk) -> models.PointStruct:
    return models.PointStruct(
        id=chunk_point_id(chunk.source_id, chunk.chunk_index),
        vector=list(chunk.embedding),
        payload={
            "content": chunk.content,
            "source_id": chunk.source_id,
            "source_type": chunk.source_type.label,
            "chunk_index": chunk.chunk_index,
            "created_at": to_iso(chunk.created_at),
            "metadata": chunk.metadata,
        },
    )


def _point_to_chunk(payload: dict[str, Any], vector: Any) -> Chunk:
    if isinstance(vector, dict):
        vector = next(iter(vector.values()), None)
    return Chunk(
        content=str(payload.get("content") or ""),
        embedding=tuple(float(value) for value in (vector or ())),
        source_id=str(payload.get("source_id") or "unknown"),
        source_type=SourceType.parse(str(payload.get("source_type") or "file")),
        chunk_index=int(payload.get("chunk_index") or 0),
        created_at=from_iso(payload.get("created_at")),
        metadata=dict(payload.get("metadata") or {}),
    )


__all__ = ["QdrantChunkStore"]
