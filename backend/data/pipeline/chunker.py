"""Chunking logic for the embedding pipeline."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class TextChunk:
    """A window of the (prepared) document text."""

    index: int
    text: str
    start: int
    end: int


def normalize_content(text: str) -> str:
    """Normalize line endings and blank lines so cosmetic edits hash the same."""
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+$", "", text, flags=re.MULTILINE)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def content_hash(text: str) -> str:
    """SHA-256 of the normalized content."""
    return hashlib.sha256(normalize_content(text).encode("utf-8")).hexdigest()


class TextChunker:
    """Fixed-size character windows with overlap.

    Consecutive windows share ``chunk_overlap`` characters; the last window
    ends at the end of the text. Output depends only on the input text and
    the two sizes.
    """

    def __init__(self, chunk_size: int = 500, chunk_overlap: int = 100):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive.")
        if chunk_overlap < 0:
            raise ValueError("chunk_overlap cannot be negative.")
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size.")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def prepare(self, text: str) -> str:
        return text.strip()

    def chunk(self, text: str | None) -> List[TextChunk]:
        """Split text into overlapping windows. Blank input yields no chunks."""
        if not text or not text.strip():
            return []

        prepared = self.prepare(text)
        if not prepared:
            return []

        step = self.chunk_size - self.chunk_overlap
        length = len(prepared)
        chunks: List[TextChunk] = []
        start = 0
        while True:
            end = min(start + self.chunk_size, length)
            window = prepared[start:end]
            if window.strip():
                chunks.append(TextChunk(index=len(chunks), text=window, start=start, end=end))
            if end >= length:
                break
            start += step
        return chunks


_FENCED_CODE_RE = re.compile(r"```[\s\S]*?```")
_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\([^)]+\)")
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_INLINE_CODE_RE = re.compile(r"`([^`]+)`")
_HEADING_RE = re.compile(r"^#{1,6}\s+", re.MULTILINE)
_BOLD_RE = re.compile(r"\*\*([^*]+)\*\*")
_ITALIC_RE = re.compile(r"\*([^*]+)\*")
_BOLD_UNDERSCORE_RE = re.compile(r"__([^_]+)__")
_ITALIC_UNDERSCORE_RE = re.compile(r"(?<!\w)_([^_]+)_(?!\w)")
_STRIKE_RE = re.compile(r"~~([^~]+)~~")
_QUOTE_RE = re.compile(r"^>\s+", re.MULTILINE)
_BULLET_RE = re.compile(r"^[*\-+]\s+", re.MULTILINE)
_NUMBERED_RE = re.compile(r"^\d+\.\s+", re.MULTILINE)


def _code_block_marker(match: re.Match) -> str:
    first_line = match.group(0).split("\n", 1)[0]
    lang = first_line[3:].strip() or "code"
    return f"[{lang} block] "


def strip_markdown(markdown: str) -> str:
    """Reduce Markdown to plain text, keeping link text and inline code."""
    text = normalize_content(markdown)
    text = _FENCED_CODE_RE.sub(_code_block_marker, text)
    text = _INLINE_CODE_RE.sub(r"\1", text)
    text = _IMAGE_RE.sub("", text)
    text = _LINK_RE.sub(r"\1", text)
    text = _HEADING_RE.sub("", text)
    text = _BOLD_RE.sub(r"\1", text)
    text = _ITALIC_RE.sub(r"\1", text)
    text = _BOLD_UNDERSCORE_RE.sub(r"\1", text)
    text = _ITALIC_UNDERSCORE_RE.sub(r"\1", text)
    text = _STRIKE_RE.sub(r"\1", text)
    text = _QUOTE_RE.sub("", text)
    text = _BULLET_RE.sub("", text)
    text = _NUMBERED_RE.sub("", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


class MarkdownChunker(TextChunker):
    """Window chunker that strips Markdown syntax first."""

    def prepare(self, text: str) -> str:
        return strip_markdown(text)


def build_chunker(chunk_size: int, chunk_overlap: int, markdown: bool = True) -> TextChunker:
    if markdown:
        return MarkdownChunker(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    return TextChunker(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
