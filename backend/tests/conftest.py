"""Test fixtures for docsearch."""

from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Sequence

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from docsearch.core.config import Settings, get_settings  # noqa: E402
from docsearch.ingest.embeddings import EmbeddingGateway, HashedEmbeddingModel  # noqa: E402
from docsearch.models.entities import Chunk, SourceKind, SourceOrigin, SourceType  # noqa: E402

TEST_DIM = 64
FIXED_TIME = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

ChunkFactory = Callable[..., Chunk]


@pytest.fixture(autouse=True)
def reset_state(monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate tests from the developer's config file and environment."""
    for key in list(os.environ):
        if key.startswith("DOCSEARCH_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        snapshot_path=tmp_path / "vector_store" / "embeddings.json",
        embedding_dim=TEST_DIM,
        chunk_size=200,
        chunk_overlap=40,
        inter_batch_delay_s=0.0,
        rate_limit_backoff_s=0.0,
        log_json=False,
    )


@pytest.fixture
def gateway() -> EmbeddingGateway:
    return EmbeddingGateway(HashedEmbeddingModel(model_name=f"hashed-{TEST_DIM}", dim=TEST_DIM))


@pytest.fixture
def make_chunk() -> ChunkFactory:
    def factory(
        content: str,
        embedding: Sequence[float],
        source_id: str = "notes.txt",
        chunk_index: int = 0,
        kind: SourceKind = SourceKind.TEXT,
        metadata: dict | None = None,
    ) -> Chunk:
        return Chunk(
            content=content,
            embedding=tuple(embedding),
            source_id=source_id,
            source_type=SourceType(origin=SourceOrigin.FILE, kind=kind),
            chunk_index=chunk_index,
            created_at=FIXED_TIME,
            metadata=metadata or {},
        )

    return factory


@pytest.fixture
def scenario_chunks(make_chunk: ChunkFactory) -> list[Chunk]:
    """Five 2-D chunks with known geometry relative to the query [1, 0]."""
    vectors = [[1.0, 0.0], [0.0, 1.0], [0.9, 0.1], [-1.0, 0.0], [0.5, 0.5]]
    return [
        make_chunk(f"chunk {index}", vector, source_id="geometry.txt", chunk_index=index)
        for index, vector in enumerate(vectors)
    ]


@pytest.fixture(scope="session")
def sample_text() -> str:
    return "Title\n\nParagraph one.\n\nParagraph two is here."
