"""Tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from docsearch.core.config import Settings
from docsearch.store.factory import build_store
from docsearch.store.flat_file import FlatFileStore
from docsearch.store.qdrant_store import QdrantChunkStore


def test_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCSEARCH_CONFIG", str(tmp_path / "absent.yaml"))
    settings = Settings.from_yaml()
    assert settings.store_backend == "flat_file"
    assert settings.chunk_size == 1000
    assert settings.chunk_overlap == 200
    assert settings.top_k_default == 3
    assert settings.insert_batch_size == 100
    assert settings.qdrant_collection == "rag_documents"
    assert not settings.answer_enabled


def test_yaml_sections_and_env_overlay(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(
        "storage:\n"
        "  backend: qdrant\n"
        "  snapshot_path: ~/custom/embeddings.json\n"
        "chunking:\n"
        "  size: 500\n"
        "  overlap: 50\n"
        "qdrant:\n"
        "  url: http://localhost:6333\n"
        "  batch_size: 25\n"
        "logging:\n"
        "  json: false\n"
    )
    monkeypatch.setenv("DOCSEARCH_CHUNK_OVERLAP", "75")
    settings = Settings.from_yaml(config)
    assert settings.store_backend == "qdrant"
    assert settings.snapshot_path == Path("~/custom/embeddings.json").expanduser()
    assert settings.chunk_size == 500
    assert settings.chunk_overlap == 75
    assert settings.qdrant_url == "http://localhost:6333"
    assert settings.insert_batch_size == 25
    assert settings.log_json is False


def test_openai_key_falls_back_to_standard_variable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    assert Settings().answer_enabled


def test_overlap_must_be_smaller_than_size() -> None:
    with pytest.raises(ValidationError):
        Settings(chunk_size=100, chunk_overlap=100)


def test_factory_selects_backend(settings) -> None:
    assert isinstance(build_store(settings, "m", 4), FlatFileStore)
    qdrant = build_store(settings.model_copy(update={"store_backend": "qdrant"}), "m", 4)
    assert isinstance(qdrant, QdrantChunkStore)
    assert qdrant.dimensions == 4
