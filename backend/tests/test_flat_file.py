"""Tests for the flat-file chunk store."""

from __future__ import annotations

import asyncio
from pathlib import Path

import orjson
import pytest

from docsearch.core.errors import DimensionMismatchError, InvalidArgumentError, NotFoundError
from docsearch.models.entities import SourceKind
from docsearch.store.flat_file import FlatFileStore


@pytest.fixture
def store(tmp_path: Path) -> FlatFileStore:
    return FlatFileStore.open(tmp_path / "embeddings.json", dimensions=2, model="test-model")


async def test_empty_store_search_returns_nothing(store: FlatFileStore) -> None:
    assert await store.search([1.0, 0.0], 3) == []
    stats = await store.stats()
    assert stats.is_empty
    assert stats.total_documents == 0


async def test_known_geometry_ranking(store: FlatFileStore, scenario_chunks) -> None:
    await store.insert_many(scenario_chunks)
    hits = await store.search([1.0, 0.0], 2)
    assert [hit.chunk.chunk_index for hit in hits] == [0, 2]
    assert hits[0].similarity == pytest.approx(1.0)
    assert hits[1].similarity == pytest.approx(0.9939, abs=1e-4)


async def test_search_is_deterministic(store: FlatFileStore, scenario_chunks) -> None:
    await store.insert_many(scenario_chunks)
    first = await store.search([0.3, 0.7], 5)
    second = await store.search([0.3, 0.7], 5)
    assert first == second
    scores = [hit.similarity for hit in first]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.parametrize("top_k, expected", [(1, 1), (3, 3), (5, 5), (50, 5)])
async def test_top_k_bound(store: FlatFileStore, scenario_chunks, top_k: int, expected: int) -> None:
    await store.insert_many(scenario_chunks)
    assert len(await store.search([1.0, 0.0], top_k)) == expected


async def test_invalid_top_k_raises(store: FlatFileStore, scenario_chunks) -> None:
    await store.insert_many(scenario_chunks)
    with pytest.raises(InvalidArgumentError):
        await store.search([1.0, 0.0], 0)


async def test_two_sources_counted(store: FlatFileStore, make_chunk) -> None:
    first = [make_chunk(f"a{i}", [1.0, float(i)], source_id="a.pdf", chunk_index=i, kind=SourceKind.PDF) for i in range(3)]
    second = [make_chunk(f"b{i}", [float(i), 1.0], source_id="b.csv", chunk_index=i, kind=SourceKind.CSV) for i in range(4)]
    assert await store.insert_many(first) == 3
    assert await store.insert_many(second) == 4
    stats = await store.stats()
    assert stats.total_chunks == 7
    assert stats.total_documents == 2
    assert [ref.source_type.label for ref in stats.sources] == ["file/pdf", "file/csv"]
    assert await store.count() == 7
    assert await store.has_source("b.csv")
    assert not await store.has_source("c.txt")


async def test_dimension_guard_leaves_store_untouched(store: FlatFileStore, make_chunk) -> None:
    await store.insert_many([make_chunk("ok", [1.0, 0.0])])
    with pytest.raises(DimensionMismatchError):
        await store.insert_many([make_chunk("bad", [1.0, 0.0, 0.0], chunk_index=1)])
    assert (await store.stats()).total_chunks == 1
    with pytest.raises(DimensionMismatchError):
        await store.search([1.0, 0.0, 0.0], 1)


async def test_duplicate_chunk_rejected(store: FlatFileStore, make_chunk) -> None:
    await store.insert_many([make_chunk("one", [1.0, 0.0])])
    with pytest.raises(InvalidArgumentError):
        await store.insert_many([make_chunk("again", [0.0, 1.0])])
    assert (await store.stats()).total_chunks == 1


async def test_clear_is_idempotent(store: FlatFileStore, scenario_chunks) -> None:
    await store.insert_many(scenario_chunks)
    await store.clear()
    assert (await store.stats()).total_chunks == 0
    await store.clear()
    assert (await store.stats()).total_chunks == 0
    assert await store.search([1.0, 0.0], 3) == []


async def test_snapshot_round_trip(tmp_path: Path, make_chunk) -> None:
    path = tmp_path / "embeddings.json"
    store = FlatFileStore.open(path, dimensions=2, model="test-model")
    chunks = [
        make_chunk("first page", [0.25, 0.75], source_id="report.pdf", chunk_index=0, kind=SourceKind.PDF, metadata={"page_number": 1}),
        make_chunk("second page", [0.5, -0.5], source_id="report.pdf", chunk_index=1, kind=SourceKind.PDF, metadata={"page_number": 2}),
        make_chunk("notes", [1.0, 0.0], source_id="notes.txt"),
    ]
    await store.insert_many(chunks)

    loaded = FlatFileStore.load(path)
    assert loaded.chunks() == store.chunks()
    assert loaded.dimensions == 2
    assert loaded.model == "test-model"
    assert loaded.created_at == store.created_at


async def test_snapshot_layout(tmp_path: Path, make_chunk) -> None:
    path = tmp_path / "embeddings.json"
    store = FlatFileStore.open(path, dimensions=2, model="test-model")
    await store.insert_many([make_chunk("hello", [1.0, 0.0], source_id="hello.txt")])

    data = orjson.loads(path.read_bytes())
    record = data["embeddings"][0]
    assert record["content"] == "hello"
    assert record["embedding"] == [1.0, 0.0]
    assert record["chunkIndex"] == 0
    assert record["metadata"]["source"] == "hello.txt"
    assert record["metadata"]["sourceType"] == "file/text"
    meta = data["metadata"]
    assert meta["totalChunks"] == 1
    assert meta["dimensions"] == 2
    assert meta["model"] == "test-model"
    assert meta["sourceFiles"] == [{"name": "hello.txt", "type": "file/text"}]
    assert not list(tmp_path.glob("*.tmp"))


def test_load_missing_snapshot(tmp_path: Path) -> None:
    with pytest.raises(NotFoundError):
        FlatFileStore.load(tmp_path / "missing.json")


async def test_open_rejects_other_dimension(tmp_path: Path, make_chunk) -> None:
    path = tmp_path / "embeddings.json"
    store = FlatFileStore.open(path, dimensions=2, model="test-model")
    await store.insert_many([make_chunk("hello", [1.0, 0.0])])
    with pytest.raises(DimensionMismatchError):
        FlatFileStore.open(path, dimensions=3, model="test-model")


async def test_concurrent_inserts_keep_each_source_contiguous(store: FlatFileStore, make_chunk) -> None:
    left = [make_chunk(f"l{i}", [1.0, 0.1 * i], source_id="left.txt", chunk_index=i) for i in range(5)]
    right = [make_chunk(f"r{i}", [0.1 * i, 1.0], source_id="right.txt", chunk_index=i) for i in range(5)]
    await asyncio.gather(store.insert_many(left), store.insert_many(right))

    stored = store.chunks()
    assert len(stored) == 10
    for source in ("left.txt", "right.txt"):
        positions = [pos for pos, chunk in enumerate(stored) if chunk.source_id == source]
        assert positions == list(range(positions[0], positions[0] + 5))
        assert [stored[pos].chunk_index for pos in positions] == list(range(5))
    reloaded = FlatFileStore.load(store.path)
    assert reloaded.chunks() == stored
