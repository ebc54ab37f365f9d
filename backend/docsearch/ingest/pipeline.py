"""Ingest pipeline orchestration."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from pathlib import Path
from typing import Any, Sequence

from docsearch.core.config import Settings
from docsearch.core.errors import EmbeddingError, PartialInsertError
from docsearch.core.logging import get_logger, log_context
from docsearch.core.metrics import INDEX_SIZE, INGEST_DURATION
from docsearch.ingest.chunker import split_text
from docsearch.ingest.embeddings import EmbeddingGateway
from docsearch.ingest.loaders import LoaderRegistry, WebPageLoader, is_url
from docsearch.ingest.types import IngestReport, IngestResult, IngestStats, LoadedDocument
from docsearch.models.entities import Chunk, SourceType
from docsearch.store.base import ChunkStore
from docsearch.utils.ids import new_id
from docsearch.utils.time import utc_now

logger = get_logger(__name__)

# loader metadata copied onto every chunk cut from that document
_DOCUMENT_META_KEYS = ("page_number", "row", "item", "key", "title", "url")


class IngestPipeline:
    """Coordinate loaders, chunking, embeddings, and the active chunk store."""

    def __init__(
        self,
        store: ChunkStore,
        gateway: EmbeddingGateway,
        settings: Settings,
        loader_registry: LoaderRegistry | None = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.settings = settings
        self.loader_registry = loader_registry or LoaderRegistry(WebPageLoader(timeout=settings.web_timeout_s))
        self._source_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def split(self, document: LoadedDocument) -> list[str]:
        return split_text(document.text, self.settings.chunk_size, self.settings.chunk_overlap)

    async def embed_and_tag(
        self,
        segments: Sequence[str],
        source_id: str,
        source_type: SourceType,
        metadata: Sequence[dict[str, Any]] | None = None,
    ) -> list[Chunk]:
        """Embed segments in order and wrap them as chunks numbered from zero.

        Any embedding failure aborts the whole call; no partial list is returned.
        """
        if metadata is not None and len(metadata) != len(segments):
            raise ValueError("metadata must align with segments")
        vectors = await self.gateway.embed_many(segments)
        created_at = utc_now()
        chunks: list[Chunk] = []
        for index, (segment, vector) in enumerate(zip(segments, vectors)):
            chunks.append(
                Chunk(
                    content=segment,
                    embedding=tuple(vector),
                    source_id=source_id,
                    source_type=source_type,
                    chunk_index=index,
                    created_at=created_at,
                    metadata=dict(metadata[index]) if metadata is not None else {},
                )
            )
        return chunks

    async def insert_from_documents(
        self,
        documents: Sequence[LoadedDocument],
        source_id: str,
        source_type: SourceType,
    ) -> int:
        """Split, embed and store every document of one source as one batch."""
        segments: list[str] = []
        segment_meta: list[dict[str, Any]] = []
        for document in documents:
            pieces = self.split(document)
            base = _document_metadata(document)
            segments.extend(pieces)
            segment_meta.extend(dict(base) for _ in pieces)
        if not segments:
            return 0
        chunks = await self.embed_and_tag(segments, source_id, source_type, segment_meta)
        return await self.store.insert_many(chunks)

    async def ingest_sources(self, targets: Sequence[str | Path]) -> IngestReport:
        """Load and ingest each path or URL in turn; one failure does not stop the rest."""
        stats = IngestStats()
        results: list[IngestResult] = []
        job_id = new_id("job")
        for target in targets:
            result = await self._ingest_one(target)
            results.append(result)
            _update_stats_from_result(stats, result)
        await self._update_index_metric()
        report = IngestReport(job_id=job_id, stats=stats, results=results)
        logger.info("Ingest job %s finished: %s", job_id, stats.to_dict(), extra=log_context(job=job_id))
        return report

    # Internal helpers -------------------------------------------------

    async def _ingest_one(self, target: str | Path) -> IngestResult:
        label = str(target)
        if isinstance(target, str) and not is_url(target):
            target = Path(target).expanduser()
        start = time.perf_counter()
        try:
            documents = await asyncio.to_thread(self.loader_registry.load, target)
        except Exception as exc:
            logger.exception("Failed to load %s: %s", label, exc)
            return IngestResult(source_id=label, status="error", detail=str(exc))

        if not documents:
            logger.warning("Source %s produced no text", label)
            return IngestResult(source_id=label, status="skipped", detail="no text extracted")

        source_id = documents[0].source_id
        source_type = documents[0].source_type
        # check and insert are atomic per source id
        async with self._source_locks[source_id]:
            if await self.store.has_source(source_id):
                logger.info("Skipping %s; already indexed", source_id)
                return IngestResult(
                    source_id=source_id,
                    status="skipped",
                    source_type=source_type.label,
                    detail="already indexed",
                )
            try:
                inserted = await self.insert_from_documents(documents, source_id, source_type)
            except PartialInsertError as exc:
                logger.exception("Ingest of %s stopped after %s chunks", source_id, exc.inserted)
                return IngestResult(
                    source_id=source_id,
                    status="error",
                    source_type=source_type.label,
                    chunks=exc.inserted,
                    detail=str(exc),
                )
            except EmbeddingError as exc:
                logger.exception("Embedding failed for %s", source_id)
                return IngestResult(source_id=source_id, status="error", source_type=source_type.label, detail=str(exc))
            except Exception as exc:
                logger.exception("Failed to store %s: %s", source_id, exc)
                return IngestResult(source_id=source_id, status="error", source_type=source_type.label, detail=str(exc))
            finally:
                INGEST_DURATION.labels(source_type=source_type.kind.value).observe(time.perf_counter() - start)

        if not inserted:
            return IngestResult(source_id=source_id, status="skipped", source_type=source_type.label, detail="no chunks")
        logger.info(
            "Ingested %s chunks from %s",
            inserted,
            source_id,
            extra=log_context(source=source_id, chunks=inserted),
        )
        return IngestResult(source_id=source_id, status="processed", source_type=source_type.label, chunks=inserted)

    async def _update_index_metric(self) -> None:
        try:
            total = await self.store.count()
        except Exception as exc:  # metrics failures should not fail the ingest job
            logger.warning("Could not refresh index size metric: %s", exc)
            return
        INDEX_SIZE.set(total)


def _document_metadata(document: LoadedDocument) -> dict[str, Any]:
    meta = {key: document.metadata[key] for key in _DOCUMENT_META_KEYS if key in document.metadata}
    if document.title and "title" not in meta:
        meta["title"] = document.title
    return meta


def _update_stats_from_result(stats: IngestStats, item: IngestResult) -> None:
    if item.status == "processed":
        stats.processed += 1
        stats.chunks += item.chunks
    elif item.status == "skipped":
        stats.skipped += 1
    elif item.status == "error":
        stats.failed += 1


__all__ = ["IngestPipeline"]
