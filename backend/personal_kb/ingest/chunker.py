"""Chunking utilities."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from personal_kb.ingest.types import ChunkPayload, ExtractedContent, Section

_MARKDOWN_HEADING_RE = re.compile(r"^#{1,6}\s+(.+?)\s*#*\s*$")
_LOWER_RE = re.compile(r"[a-z]")
_UPPER_RE = re.compile(r"[A-Z]")

MAX_CAPS_HEADING_CHARS = 80
MAX_CAPS_HEADING_WORDS = 12


@dataclass(slots=True)
class SectionChunk:
    text: str
    section_title: str | None


def count_tokens(text: str) -> int:
    """Whitespace token count."""
    return len(text.split())


def chunk_text(text: str, max_tokens: int = 220, overlap_tokens: int = 40) -> list[str]:
    """Split text into overlapping windows of at most ``max_tokens`` tokens.

    The window advances by ``max_tokens - overlap_tokens`` but always by at least one
    token. Tokens are re-joined with single spaces.
    """
    tokens = text.split()
    if not tokens:
        return []
    max_tokens = max(1, max_tokens)
    overlap_tokens = max(0, overlap_tokens)

    chunks: list[str] = []
    start = 0
    while start < len(tokens):
        end = min(start + max_tokens, len(tokens))
        chunks.append(" ".join(tokens[start:end]))
        if end >= len(tokens):
            break
        start = max(end - overlap_tokens, start + 1)
    return chunks


def _heading_title(line: str) -> str | None:
    stripped = line.strip()
    if not stripped:
        return None
    match = _MARKDOWN_HEADING_RE.match(stripped)
    if match:
        return match.group(1).strip()
    if (
        stripped[0].isalnum()
        and len(stripped) <= MAX_CAPS_HEADING_CHARS
        and len(stripped.split()) <= MAX_CAPS_HEADING_WORDS
        and len(_UPPER_RE.findall(stripped)) >= 2
        and not _LOWER_RE.search(stripped)
    ):
        return stripped
    return None


def split_text_by_sections(text: str) -> list[Section]:
    """Split text on heading lines (Markdown ``#`` headings or ALL-CAPS lines)."""
    sections: list[Section] = []
    title: str | None = None
    body: list[str] = []
    seen_heading = False

    def flush() -> None:
        content = "\n".join(body).strip()
        if content or title is not None:
            sections.append(Section(title=title, text=content))

    for line in text.splitlines():
        heading = _heading_title(line)
        if heading is not None:
            if seen_heading or any(part.strip() for part in body):
                flush()
            title = heading
            body = []
            seen_heading = True
            continue
        body.append(line)
    flush()
    return [section for section in sections if section.text or section.title]


def chunk_by_sections(
    sections: Iterable[Section],
    max_tokens: int = 350,
    overlap_tokens: int = 40,
) -> list[SectionChunk]:
    """Window each section independently, tagging chunks with the section title."""
    chunks: list[SectionChunk] = []
    for section in sections:
        for piece in chunk_text(section.text, max_tokens, overlap_tokens):
            chunks.append(SectionChunk(text=piece, section_title=section.title))
    return chunks


def plan_chunks(
    content: ExtractedContent,
    max_tokens: int = 220,
    overlap_tokens: int = 40,
    section_max_tokens: int = 350,
) -> list[ChunkPayload]:
    """Produce the ordered chunk payloads for extracted content.

    Empty or whitespace-only text yields no chunks. Text that has content but no
    windowable body (for example only headings) becomes a single whole-text chunk.
    """
    text = content.text or ""
    if not text.strip():
        return []

    sections: Sequence[Section] = content.sections or split_text_by_sections(text)
    if any(section.title for section in sections):
        pieces = chunk_by_sections(sections, section_max_tokens, overlap_tokens)
    else:
        pieces = [SectionChunk(text=piece, section_title=None) for piece in chunk_text(text, max_tokens, overlap_tokens)]

    if not pieces:
        whole = " ".join(text.split())
        pieces = [SectionChunk(text=whole, section_title=None)]

    return [
        ChunkPayload(
            index=index,
            text=piece.text,
            token_count=count_tokens(piece.text),
            section_title=piece.section_title,
        )
        for index, piece in enumerate(pieces)
    ]


__all__ = [
    "SectionChunk",
    "count_tokens",
    "chunk_text",
    "split_text_by_sections",
    "chunk_by_sections",
    "plan_chunks",
]
