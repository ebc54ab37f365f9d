"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

ENV_PREFIX = "DOCSEARCH_"
DEFAULT_CONFIG_PATH = Path("~/.config/docsearch/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "backend"): "store_backend",
    ("storage", "snapshot_path"): "snapshot_path",
    ("embeddings", "backend"): "embedding_backend",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("chunking", "size"): "chunk_size",
    ("chunking", "overlap"): "chunk_overlap",
    ("retrieval", "top_k"): "top_k_default",
    ("qdrant", "url"): "qdrant_url",
    ("qdrant", "api_key"): "qdrant_api_key",
    ("qdrant", "location"): "qdrant_location",
    ("qdrant", "collection"): "qdrant_collection",
    ("qdrant", "batch_size"): "insert_batch_size",
    ("qdrant", "insert_timeout"): "insert_timeout_s",
    ("qdrant", "search_timeout"): "search_timeout_s",
    ("qdrant", "batch_delay"): "inter_batch_delay_s",
    ("qdrant", "rate_limit_retries"): "rate_limit_retries",
    ("qdrant", "rate_limit_backoff"): "rate_limit_backoff_s",
    ("qdrant", "stats_scan_limit"): "stats_scan_limit",
    ("answer", "api_key"): "openai_api_key",
    ("answer", "base_url"): "openai_base_url",
    ("answer", "model"): "answer_model",
    ("answer", "temperature"): "answer_temperature",
    ("answer", "max_tokens"): "answer_max_tokens",
    ("loaders", "web_timeout"): "web_timeout_s",
    ("logging", "level"): "log_level",
    ("logging", "json"): "log_json",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    store_backend: Literal["flat_file", "qdrant"] = "flat_file"
    snapshot_path: Path = Field(default=Path.home() / ".docsearch" / "vector_store" / "embeddings.json")
    embedding_backend: Literal["hashed", "sentence_transformers"] = "hashed"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dim: int = Field(default=384, gt=0)
    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    top_k_default: int = Field(default=3, gt=0)
    qdrant_url: str | None = None
    qdrant_api_key: str | None = None
    qdrant_location: str | None = None
    qdrant_collection: str = "rag_documents"
    insert_batch_size: int = Field(default=100, gt=0)
    insert_timeout_s: float = 60.0
    search_timeout_s: float = 30.0
    inter_batch_delay_s: float = 0.5
    rate_limit_retries: int = Field(default=3, ge=1)
    rate_limit_backoff_s: float = 1.0
    stats_scan_limit: int = Field(default=16384, gt=0)
    openai_api_key: str | None = Field(default_factory=lambda: os.environ.get("OPENAI_API_KEY"))
    openai_base_url: str | None = None
    answer_model: str = "gpt-4o-mini"
    answer_temperature: float = 0.7
    answer_max_tokens: int = 2048
    web_timeout_s: float = 15.0
    log_level: str = "INFO"
    log_json: bool = True

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("snapshot_path", mode="before")
    @classmethod
    def _expand_snapshot_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("snapshot_path must be a path or string")

    @model_validator(mode="after")
    def _check_overlap(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None

    @property
    def answer_enabled(self) -> bool:
        return bool(self.openai_api_key)


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with DOCSEARCH_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for process entry points."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
