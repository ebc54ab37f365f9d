"""Text processing helpers."""

from __future__ import annotations

import re


WHITESPACE_RE = re.compile(r"\s+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")
_INLINE_SPACE_RE = re.compile(r"[ \t\f\v]+")


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def tidy_paragraphs(text: str) -> str:
    """Collapse runs of spaces while keeping paragraph and line breaks."""
    text = _INLINE_SPACE_RE.sub(" ", text.replace("\r\n", "\n"))
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return "\n".join(line.strip() for line in text.split("\n")).strip()
