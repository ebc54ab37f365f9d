"""Tests for the Qdrant-backed chunk store.

Behavioural tests run against qdrant-client's embedded ``:memory:`` mode;
batching and failure handling use a scripted fake client.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import httpx
import pytest
from qdrant_client import models
from qdrant_client.http.exceptions import UnexpectedResponse

from docsearch.core.errors import BackendUnavailableError, DimensionMismatchError, PartialInsertError
from docsearch.store.qdrant_store import QdrantChunkStore


@pytest.fixture
async def store():
    instance = QdrantChunkStore("test_chunks", dimensions=2, model="test-model", location=":memory:", inter_batch_delay=0)
    yield instance
    await instance.close()


async def test_search_before_first_insert(store: QdrantChunkStore) -> None:
    assert await store.search([1.0, 0.0], 3) == []
    stats = await store.stats()
    assert stats.total_chunks == 0
    assert stats.total_documents == 0


async def test_known_geometry_ranking(store: QdrantChunkStore, scenario_chunks) -> None:
    assert await store.insert_many(scenario_chunks) == 5
    hits = await store.search([1.0, 0.0], 2)
    assert [hit.chunk.chunk_index for hit in hits] == [0, 2]
    assert hits[0].distance == pytest.approx(0.0, abs=1e-6)
    assert hits[0].similarity == pytest.approx(1.0)
    assert hits[0].similarity > hits[1].similarity
    assert hits[0].chunk.content == "chunk 0"
    assert hits[0].chunk.source_id == "geometry.txt"


async def test_top_k_larger_than_collection(store: QdrantChunkStore, scenario_chunks) -> None:
    await store.insert_many(scenario_chunks)
    assert len(await store.search([0.0, 1.0], 20)) == 5


async def test_two_sources_counted(store: QdrantChunkStore, make_chunk) -> None:
    await store.insert_many([make_chunk(f"a{i}", [1.0, float(i)], source_id="a.txt", chunk_index=i) for i in range(3)])
    await store.insert_many([make_chunk(f"b{i}", [float(i), 1.0], source_id="b.txt", chunk_index=i) for i in range(4)])
    stats = await store.stats()
    assert stats.total_chunks == 7
    assert stats.total_documents == 2
    assert not stats.sources_truncated


async def test_dimension_guard(store: QdrantChunkStore, make_chunk) -> None:
    await store.insert_many([make_chunk("ok", [1.0, 0.0])])
    with pytest.raises(DimensionMismatchError):
        await store.insert_many([make_chunk("bad", [1.0, 0.0, 1.0], chunk_index=1)])
    assert (await store.stats()).total_chunks == 1


async def test_clear_is_idempotent(store: QdrantChunkStore, scenario_chunks) -> None:
    await store.insert_many(scenario_chunks)
    await store.clear()
    assert (await store.stats()).total_chunks == 0
    await store.clear()
    assert (await store.stats()).total_chunks == 0
    assert await store.search([1.0, 0.0], 3) == []


async def test_ensure_collection_is_idempotent(store: QdrantChunkStore) -> None:
    await store.ensure_collection(2)
    await store.ensure_collection(2)
    client = await store._get_client()
    assert await client.collection_exists("test_chunks")


async def test_reinserting_a_chunk_overwrites_it(store: QdrantChunkStore, scenario_chunks) -> None:
    await store.insert_many(scenario_chunks)
    await store.insert_many(scenario_chunks)
    assert await store.count() == 5
    assert len(await store.search([1.0, 0.0], 10)) == 5


async def test_has_source_is_not_bounded_by_scan_limit(make_chunk) -> None:
    store = QdrantChunkStore("sources", dimensions=2, model="m", location=":memory:", inter_batch_delay=0, stats_scan_limit=1)
    try:
        for name in ("a.txt", "b.txt", "c.txt"):
            await store.insert_many([make_chunk(f"{name} {i}", [1.0, float(i)], source_id=name, chunk_index=i) for i in range(2)])
        assert (await store.stats()).sources_truncated
        assert [await store.has_source(name) for name in ("a.txt", "b.txt", "c.txt")] == [True, True, True]
        assert not await store.has_source("d.txt")
        assert await store.count("b.txt") == 2
        assert await store.count() == 6
    finally:
        await store.close()


async def test_stats_scan_limit_flags_truncation(make_chunk) -> None:
    store = QdrantChunkStore("capped", dimensions=2, model="m", location=":memory:", inter_batch_delay=0, stats_scan_limit=3)
    try:
        await store.insert_many(
            [make_chunk(f"doc {i}", [1.0, float(i)], source_id=f"doc{i}.txt") for i in range(5)]
        )
        stats = await store.stats()
        assert stats.total_chunks == 5
        assert stats.sources_truncated
        assert stats.total_documents <= 3
    finally:
        await store.close()


# Scripted client ----------------------------------------------------------


def _rate_limited() -> UnexpectedResponse:
    return UnexpectedResponse(
        status_code=429,
        reason_phrase="Too Many Requests",
        content=b'{"status": {"error": "rate limited"}}',
        headers=httpx.Headers(),
    )


class FakeClient:
    """Minimal stand-in recording the calls the store makes."""

    def __init__(
        self,
        failures: dict[int, list[Exception]] | None = None,
        statuses: list[models.CollectionStatus] | None = None,
    ) -> None:
        self.exists = False
        self.upserts: list[int] = []
        self.upsert_calls = 0
        self.closed = 0
        self.payload_indexes: list[str] = []
        # upsert call number -> exceptions to raise on successive attempts
        self.failures = failures or {}
        # reported by successive get_collection calls; the last one repeats
        self.statuses = statuses or [models.CollectionStatus.GREEN]
        self.status_checks = 0
        self.collection_updates = 0
        self.queries = 0

    async def collection_exists(self, collection_name: str) -> bool:
        return self.exists

    async def create_collection(self, collection_name: str, **kwargs: Any) -> bool:
        self.exists = True
        return True

    async def create_payload_index(self, collection_name: str, field_name: str, **kwargs: Any) -> None:
        self.payload_indexes.append(field_name)

    async def get_collection(self, collection_name: str) -> SimpleNamespace:
        self.status_checks += 1
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        vectors = models.VectorParams(size=2, distance=models.Distance.EUCLID)
        return SimpleNamespace(status=status, config=SimpleNamespace(params=SimpleNamespace(vectors=vectors)))

    async def update_collection(self, collection_name: str, **kwargs: Any) -> bool:
        self.collection_updates += 1
        return True

    async def query_points(self, collection_name: str, **kwargs: Any) -> SimpleNamespace:
        self.queries += 1
        return SimpleNamespace(points=[])

    async def upsert(self, collection_name: str, points: list, wait: bool = True) -> None:
        self.upsert_calls += 1
        batch_number = len(self.upserts) + 1
        pending = self.failures.get(batch_number)
        if pending:
            raise pending.pop(0)
        self.upserts.append(len(points))

    async def close(self) -> None:
        self.closed += 1


def _remote_store(client: FakeClient, **kwargs: Any) -> QdrantChunkStore:
    options = {"insert_batch_size": 2, "inter_batch_delay": 0, "rate_limit_backoff": 0.0, "rate_limit_retries": 3}
    options.update(kwargs)
    return QdrantChunkStore(
        "remote",
        dimensions=2,
        model="m",
        url="http://qdrant.invalid:6333",
        client_factory=lambda: client,
        **options,
    )


async def test_insert_is_partitioned_into_batches(scenario_chunks) -> None:
    client = FakeClient()
    store = _remote_store(client)
    assert await store.insert_many(scenario_chunks) == 5
    assert client.upserts == [2, 2, 1]
    assert client.payload_indexes == ["source_id", "source_type"]


async def test_failed_batch_reports_committed_count(scenario_chunks) -> None:
    client = FakeClient(failures={2: [ConnectionError("reset"), ConnectionError("reset again")]})
    store = _remote_store(client)
    with pytest.raises(PartialInsertError) as excinfo:
        await store.insert_many(scenario_chunks)
    assert excinfo.value.inserted == 2
    assert isinstance(excinfo.value.cause, BackendUnavailableError)
    assert client.upserts == [2]
    assert client.closed == 1


async def test_transport_failure_retried_on_fresh_connection(scenario_chunks) -> None:
    client = FakeClient(failures={1: [ConnectionError("reset")]})
    store = _remote_store(client)
    assert await store.insert_many(scenario_chunks) == 5
    assert client.closed == 1
    assert client.upserts == [2, 2, 1]


async def test_rate_limit_backs_off_then_succeeds(scenario_chunks) -> None:
    client = FakeClient(failures={1: [_rate_limited(), _rate_limited()]})
    store = _remote_store(client)
    assert await store.insert_many(scenario_chunks) == 5
    assert client.upsert_calls == 5
    assert client.closed == 0


async def test_persistent_rate_limit_aborts_insert(scenario_chunks) -> None:
    client = FakeClient(failures={1: [_rate_limited() for _ in range(3)]})
    store = _remote_store(client)
    with pytest.raises(PartialInsertError) as excinfo:
        await store.insert_many(scenario_chunks)
    assert excinfo.value.inserted == 0
    assert client.upsert_calls == 3


async def test_timeout_surfaces_as_backend_unavailable(scenario_chunks) -> None:
    client = FakeClient(failures={1: [TimeoutError(), TimeoutError()]})
    store = _remote_store(client)
    with pytest.raises(PartialInsertError) as excinfo:
        await store.insert_many(scenario_chunks)
    assert isinstance(excinfo.value.cause, BackendUnavailableError)


async def test_grey_collection_is_nudged_once_before_search() -> None:
    client = FakeClient(statuses=[models.CollectionStatus.GREY, models.CollectionStatus.GREEN])
    client.exists = True
    store = _remote_store(client)
    assert await store.search([1.0, 0.0], 3) == []
    assert client.collection_updates == 1
    assert client.status_checks == 2
    assert client.queries == 1


async def test_collection_still_red_after_nudge_is_unavailable() -> None:
    client = FakeClient(statuses=[models.CollectionStatus.RED, models.CollectionStatus.RED])
    client.exists = True
    store = _remote_store(client)
    with pytest.raises(BackendUnavailableError):
        await store.search([1.0, 0.0], 3)
    assert client.collection_updates == 1
    assert client.queries == 0


async def test_green_collection_is_searched_directly() -> None:
    client = FakeClient()
    client.exists = True
    store = _remote_store(client)
    await store.search([1.0, 0.0], 3)
    assert client.collection_updates == 0
    assert client.status_checks == 1
    assert client.queries == 1


async def test_empty_url_is_treated_as_embedded(scenario_chunks) -> None:
    client = FakeClient(failures={1: [ConnectionError("reset")]})
    store = QdrantChunkStore(
        "embedded",
        dimensions=2,
        model="m",
        url="",
        insert_batch_size=2,
        inter_batch_delay=0,
        rate_limit_backoff=0.0,
        client_factory=lambda: client,
    )
    assert store._is_local
    assert store._location == ":memory:"
    with pytest.raises(PartialInsertError):
        await store.insert_many(scenario_chunks)
    assert client.closed == 0


def test_from_settings_defaults_to_embedded(settings) -> None:
    store = QdrantChunkStore.from_settings(settings, model="m", dimensions=4)
    assert store.collection_name == "rag_documents"
    assert store.insert_batch_size == 100
    assert store._location == ":memory:"
    assert store._is_local


def test_vector_size_helper_reads_single_vector_config() -> None:
    from docsearch.store.qdrant_store import _vector_size

    info = SimpleNamespace(config=SimpleNamespace(params=SimpleNamespace(vectors=models.VectorParams(size=7, distance=models.Distance.EUCLID))))
    assert _vector_size(info) == 7
