"""Document loaders for supported formats."""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import fitz
import orjson
import requests
import yaml
from bs4 import BeautifulSoup
from markdown_it import MarkdownIt

from docsearch.core.errors import UnsupportedFormatError
from docsearch.core.logging import get_logger
from docsearch.ingest.types import LoadedDocument
from docsearch.models.entities import SourceKind, SourceOrigin, SourceType
from docsearch.utils.text import normalize, tidy_paragraphs

logger = get_logger(__name__)

_MD = MarkdownIt()

_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
_STRIP_TAGS = ("script", "style", "nav", "footer", "header", "noscript")
_STRIP_SELECTORS = (".advertisement", "#cookie-banner")
_CONTENT_SELECTORS = (
    "article",
    "main",
    "[role=main]",
    ".content",
    ".main-content",
    "#content",
    "#main",
    ".post-content",
    ".entry-content",
    "body",
)
MIN_PAGE_CHARS = 100


class BaseLoader:
    """Common loader interface."""

    suffixes: tuple[str, ...] = ()
    kind: SourceKind = SourceKind.TEXT

    def can_load(self, path: Path) -> bool:
        return path.suffix.lower() in self.suffixes

    def source_type(self) -> SourceType:
        return SourceType(origin=SourceOrigin.FILE, kind=self.kind)

    def load(self, path: Path) -> list[LoadedDocument]:  # pragma: no cover - interface
        raise NotImplementedError


class TextLoader(BaseLoader):
    suffixes = (".txt", ".text", ".log")

    def load(self, path: Path) -> list[LoadedDocument]:
        text = path.read_bytes().decode("utf-8", errors="ignore")
        return [
            LoadedDocument(
                text=tidy_paragraphs(text),
                source_id=path.name,
                source_type=self.source_type(),
                metadata={"path": str(path)},
                title=path.stem,
            )
        ]


class MarkdownLoader(BaseLoader):
    suffixes = (".md", ".markdown")

    def load(self, path: Path) -> list[LoadedDocument]:
        text = path.read_bytes().decode("utf-8", errors="ignore")
        front_matter, body = _split_front_matter(text)
        metadata: dict[str, Any] = {"path": str(path)}
        if front_matter:
            metadata["front_matter"] = front_matter
        title = front_matter.get("title") if front_matter else None
        return [
            LoadedDocument(
                text=_markdown_to_text(body),
                source_id=path.name,
                source_type=self.source_type(),
                metadata=metadata,
                title=str(title) if title else path.stem,
            )
        ]


class PDFLoader(BaseLoader):
    suffixes = (".pdf",)
    kind = SourceKind.PDF

    def load(self, path: Path) -> list[LoadedDocument]:
        raw = path.read_bytes()
        with fitz.open(stream=raw, filetype="pdf") as doc:
            pages = [page.get_text("text", sort=True) for page in doc]
        documents: list[LoadedDocument] = []
        for page_number, page_text in enumerate(pages, start=1):
            text = tidy_paragraphs(page_text)
            if not text:
                continue
            documents.append(
                LoadedDocument(
                    text=text,
                    source_id=path.name,
                    source_type=self.source_type(),
                    metadata={"path": str(path), "page_number": page_number, "page_count": len(pages)},
                    title=path.stem,
                )
            )
        return documents


class CSVLoader(BaseLoader):
    """One document per row, rendered as ``header: value`` lines."""

    suffixes = (".csv",)
    kind = SourceKind.CSV

    def load(self, path: Path) -> list[LoadedDocument]:
        text = path.read_bytes().decode("utf-8-sig", errors="ignore")
        reader = csv.DictReader(io.StringIO(text))
        documents: list[LoadedDocument] = []
        for row_number, row in enumerate(reader, start=1):
            lines = [f"{(key or '').strip()}: {(value or '').strip()}" for key, value in row.items() if key is not None]
            content = "\n".join(lines).strip()
            if not content:
                continue
            documents.append(
                LoadedDocument(
                    text=content,
                    source_id=path.name,
                    source_type=self.source_type(),
                    metadata={"path": str(path), "row": row_number},
                    title=path.stem,
                )
            )
        return documents


class JSONLoader(BaseLoader):
    """Arrays yield one document per item, objects one per key."""

    suffixes = (".json",)
    kind = SourceKind.JSON

    def load(self, path: Path) -> list[LoadedDocument]:
        data = orjson.loads(path.read_bytes())
        base = {"path": str(path)}
        if isinstance(data, list):
            entries = [(_render_json(item), {**base, "item": idx}) for idx, item in enumerate(data, start=1)]
        elif isinstance(data, dict):
            entries = [(_render_json(value), {**base, "key": key}) for key, value in data.items()]
        else:
            entries = [(str(data), base)]
        return [
            LoadedDocument(
                text=text,
                source_id=path.name,
                source_type=self.source_type(),
                metadata=metadata,
                title=path.stem,
            )
            for text, metadata in entries
            if text.strip()
        ]


class WebPageLoader:
    """Fetch a page and keep the text of its main content container."""

    def __init__(self, timeout: float = 15.0, session: requests.Session | None = None) -> None:
        self.timeout = timeout
        self.session = session or requests.Session()

    def load(self, url: str) -> list[LoadedDocument]:
        response = self.session.get(
            url,
            headers={
                "User-Agent": _USER_AGENT,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.5",
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        title, content = extract_page_text(response.text)
        if len(content) <= MIN_PAGE_CHARS:
            logger.warning("Page %s yielded only %s characters of text", url, len(content))
        if not content:
            return []
        return [
            LoadedDocument(
                text=content,
                source_id=url,
                source_type=SourceType(origin=SourceOrigin.URL, kind=SourceKind.WEBPAGE),
                metadata={"url": url, "title": title},
                title=title,
            )
        ]


def extract_page_text(html: str) -> tuple[str, str]:
    """Return ``(title, text)`` for the first content container with enough text."""
    soup = BeautifulSoup(html, "html.parser")
    title_tag = soup.find("title")
    heading = soup.find("h1")
    title = ""
    if title_tag and title_tag.get_text(strip=True):
        title = title_tag.get_text(strip=True)
    elif heading:
        title = heading.get_text(strip=True)
    for tag in soup(list(_STRIP_TAGS)):
        tag.decompose()
    for selector in _STRIP_SELECTORS:
        for tag in soup.select(selector):
            tag.decompose()
    content = ""
    for selector in _CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element is None:
            continue
        content = normalize(element.get_text(" "))
        if len(content) > MIN_PAGE_CHARS:
            break
    return title or "Untitled", content


class LoaderRegistry:
    """Registry that selects an appropriate loader for a path or URL."""

    def __init__(self, web_loader: WebPageLoader | None = None) -> None:
        self._loaders: list[BaseLoader] = [
            MarkdownLoader(),
            TextLoader(),
            PDFLoader(),
            CSVLoader(),
            JSONLoader(),
        ]
        self.web_loader = web_loader or WebPageLoader()

    def for_path(self, path: Path) -> BaseLoader | None:
        for loader in self._loaders:
            if loader.can_load(path):
                return loader
        return None

    def load(self, target: str | Path) -> list[LoadedDocument]:
        if isinstance(target, str) and is_url(target):
            return self.web_loader.load(target)
        path = Path(target).expanduser()
        loader = self.for_path(path)
        if loader is None:
            supported = ", ".join(sorted(suffix for item in self._loaders for suffix in item.suffixes))
            raise UnsupportedFormatError(f"Unsupported file type '{path.suffix}'. Supported: {supported}, or URLs")
        return loader.load(path)


def is_url(value: str) -> bool:
    return urlparse(value).scheme in {"http", "https"}


def _render_json(value: Any) -> str:
    if isinstance(value, str):
        return value
    return orjson.dumps(value, option=orjson.OPT_INDENT_2).decode("utf-8")


def _split_front_matter(text: str) -> tuple[dict[str, object] | None, str]:
    if text.startswith("---"):
        parts = text.split("---", 2)
        if len(parts) >= 3:
            fm_raw = parts[1]
            body = parts[2]
            try:
                front_matter = yaml.safe_load(fm_raw) or {}
                if isinstance(front_matter, dict):
                    return front_matter, body
            except yaml.YAMLError:
                logger.debug("Ignoring malformed front matter")
    return None, text


def _markdown_to_text(text: str) -> str:
    tokens = _MD.parse(text)
    parts: list[str] = []
    for token in tokens:
        content = token.content.strip()
        if content:
            parts.append(content)
    return tidy_paragraphs("\n\n".join(parts) if parts else text)


__all__ = [
    "BaseLoader",
    "TextLoader",
    "MarkdownLoader",
    "PDFLoader",
    "CSVLoader",
    "JSONLoader",
    "WebPageLoader",
    "LoaderRegistry",
    "extract_page_text",
    "is_url",
]
