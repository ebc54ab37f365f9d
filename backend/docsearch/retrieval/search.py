"""Search orchestration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from docsearch.core.config import Settings
from docsearch.core.errors import InvalidArgumentError, SynthesisUnavailableError
from docsearch.core.logging import get_logger
from docsearch.ingest.embeddings import EmbeddingGateway
from docsearch.models.entities import ScoredChunk
from docsearch.retrieval.answer import AnswerSynthesizer, build_prompt
from docsearch.store.base import ChunkStore
from docsearch.store.ranking import validate_top_k

logger = get_logger(__name__)

EMPTY_MESSAGE = "No documents indexed. Ingest some documents first."


@dataclass(slots=True)
class QueryOutcome:
    query: str
    status: str
    hits: list[ScoredChunk] = field(default_factory=list)
    message: str | None = None
    answer: str | None = None
    model: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.status == "empty"

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "status": self.status,
            "message": self.message,
            "answer": self.answer,
            "model": self.model,
            "results": [_hit_to_dict(hit) for hit in self.hits],
        }


class QueryService:
    """Embeds queries, ranks stored chunks, and optionally writes an answer."""

    def __init__(
        self,
        store: ChunkStore,
        gateway: EmbeddingGateway,
        settings: Settings,
        synthesizer: AnswerSynthesizer | None = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.settings = settings
        self.synthesizer = synthesizer

    @property
    def answer_enabled(self) -> bool:
        return self.synthesizer is not None

    async def search(self, query_text: str, k: int | None = None) -> QueryOutcome:
        query_text = _check_query(query_text)
        top_k = self.settings.top_k_default if k is None else k
        validate_top_k(top_k)

        if await self.store.count() == 0:
            logger.info("Query against empty store")
            outcome = QueryOutcome(query=query_text, status="empty", message=EMPTY_MESSAGE)
        else:
            vector = await self.gateway.embed(query_text)
            hits = await self.store.search(vector, top_k)
            logger.info("Query returned %s of %s requested hits", len(hits), top_k)
            outcome = QueryOutcome(query=query_text, status="ok", hits=hits)
        return outcome

    async def answer(self, query_text: str, k: int | None = None) -> QueryOutcome:
        """Search, then ask the answer model to respond from the ranked context."""
        if self.synthesizer is None:
            raise SynthesisUnavailableError(
                "Answer model not configured. Set DOCSEARCH_OPENAI_API_KEY or OPENAI_API_KEY."
            )
        outcome = await self.search(query_text, k)
        if outcome.is_empty:
            outcome.answer = "No documents in vector store. Please ingest some documents first."
            return outcome
        prompt = build_prompt(outcome.query, outcome.hits)
        outcome.answer = await self.synthesizer.generate(prompt)
        outcome.model = self.synthesizer.model
        return outcome


def _check_query(query_text: str) -> str:
    if not isinstance(query_text, str) or not query_text.strip():
        raise InvalidArgumentError("Query is required")
    return query_text.strip()


def _hit_to_dict(hit: ScoredChunk) -> dict[str, Any]:
    chunk = hit.chunk
    return {
        "content": chunk.content,
        "source": chunk.source_id,
        "source_type": chunk.source_type.label,
        "chunk_index": chunk.chunk_index,
        "page": chunk.metadata.get("page_number"),
        "similarity": hit.similarity,
        "distance": hit.distance,
        "metadata": dict(chunk.metadata),
    }


__all__ = ["QueryService", "QueryOutcome", "EMPTY_MESSAGE"]
