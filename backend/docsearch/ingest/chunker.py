"""Chunking utilities."""

from __future__ import annotations

from typing import Sequence

from docsearch.core.errors import InvalidArgumentError

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200
DEFAULT_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", " ", "")


def split_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    separators: Sequence[str] = DEFAULT_SEPARATORS,
) -> list[str]:
    """Split text into overlapping segments of at most ``chunk_size`` characters.

    The text is cut on the coarsest separator that occurs in it; pieces that
    are still too long are cut again on the next separator, down to single
    characters. Adjacent pieces are then merged back into windows, carrying up
    to ``chunk_overlap`` characters of trailing context into the next window.
    """
    _validate(chunk_size, chunk_overlap)
    if not text.strip():
        return []
    return _split_recursive(text, list(separators), chunk_size, chunk_overlap)


def _validate(chunk_size: int, chunk_overlap: int) -> None:
    if chunk_size <= 0:
        raise InvalidArgumentError("chunk_size must be positive")
    if chunk_overlap < 0:
        raise InvalidArgumentError("chunk_overlap must not be negative")
    if chunk_overlap >= chunk_size:
        raise InvalidArgumentError("chunk_overlap must be smaller than chunk_size")


def _split_recursive(text: str, separators: list[str], chunk_size: int, chunk_overlap: int) -> list[str]:
    separator = separators[-1]
    remaining: list[str] = []
    for idx, candidate in enumerate(separators):
        if candidate == "":
            separator = candidate
            break
        if candidate in text:
            separator = candidate
            remaining = separators[idx + 1 :]
            break

    pieces = text.split(separator) if separator else list(text)
    chunks: list[str] = []
    pending: list[str] = []
    for piece in pieces:
        if len(piece) < chunk_size:
            pending.append(piece)
            continue
        if pending:
            chunks.extend(_merge(pending, separator, chunk_size, chunk_overlap))
            pending = []
        if remaining:
            chunks.extend(_split_recursive(piece, remaining, chunk_size, chunk_overlap))
        else:
            stripped = piece.strip()
            if stripped:
                chunks.append(stripped)
    if pending:
        chunks.extend(_merge(pending, separator, chunk_size, chunk_overlap))
    return chunks


def _merge(pieces: Sequence[str], separator: str, chunk_size: int, chunk_overlap: int) -> list[str]:
    sep_len = len(separator)
    merged: list[str] = []
    window: list[str] = []
    total = 0
    for piece in pieces:
        piece_len = len(piece)
        if total + piece_len + (sep_len if window else 0) > chunk_size:
            if window:
                chunk = _join(window, separator)
                if chunk:
                    merged.append(chunk)
                # keep at most chunk_overlap characters of tail, and leave room for the next piece
                while total > chunk_overlap or (
                    total > 0 and total + piece_len + (sep_len if window else 0) > chunk_size
                ):
                    total -= len(window[0]) + (sep_len if len(window) > 1 else 0)
                    window.pop(0)
        window.append(piece)
        total += piece_len + (sep_len if len(window) > 1 else 0)
    chunk = _join(window, separator)
    if chunk:
        merged.append(chunk)
    return merged


def _join(pieces: Sequence[str], separator: str) -> str:
    return separator.join(pieces).strip()


__all__ = ["split_text", "DEFAULT_CHUNK_SIZE", "DEFAULT_CHUNK_OVERLAP"]
