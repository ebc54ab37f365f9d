"""Logging setup for docsearch.

Records are emitted as one JSON object per line. Structured fields travel in
``extra`` under a ``ctx_`` prefix (build them with :func:`log_context`); the
formatter strips the prefix and nests them under ``context``::

    logger.info("Ingested", extra=log_context(source="notes.txt", chunks=4))
    {"timestamp": "...", "level": "INFO", "name": "docsearch.ingest.pipeline",
     "message": "Ingested", "context": {"source": "notes.txt", "chunks": 4}}

Fields currently emitted:

* ``job`` -- ingest job id, on the job summary line
* ``source`` / ``chunks`` -- per-source ingest outcome
* ``collection`` / ``batch`` / ``inserted`` -- Qdrant batch failures
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import orjson

_DEFAULT_LEVEL = os.environ.get("DOCSEARCH_LOG_LEVEL", "INFO")
_CONTEXT_PREFIX = "ctx_"
# HTTP clients used by qdrant-client, openai and the web loader log every request at INFO
_CHATTY_LOGGERS = ("httpx", "httpcore", "urllib3")


def log_context(**fields: Any) -> dict[str, Any]:
    """Build an ``extra`` mapping whose keys the JSON formatter will pick up."""
    return {f"{_CONTEXT_PREFIX}{key}": value for key, value in fields.items()}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        context = {
            key[len(_CONTEXT_PREFIX) :]: value
            for key, value in record.__dict__.items()
            if key.startswith(_CONTEXT_PREFIX)
        }
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


def configure_logging(level: str | int = _DEFAULT_LEVEL, use_json: bool = True) -> None:
    """Install a single stdout handler on the root logger."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))


def get_logger(name: str = "docsearch") -> logging.Logger:
    """Return a named logger, configuring the root logger if nothing has yet."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "configure_logging", "get_logger", "log_context"]
