"""Retrieval orchestration components."""

from .answer import AnswerSynthesizer, build_context
from .search import QueryOutcome, QueryService

__all__ = [
    "AnswerSynthesizer",
    "QueryOutcome",
    "QueryService",
    "build_context",
]
