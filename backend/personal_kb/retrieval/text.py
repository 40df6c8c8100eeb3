"""Text cleanup, sentence splitting and span helpers for answer synthesis."""

from __future__ import annotations

import re
from typing import Iterable

NOISE_LINE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(menu|navigation|skip to|jump to|breadcrumb|sidebar|footer|copyright|©)", re.I),
    re.compile(r"^(home|about|contact|login|sign ?up|subscribe|follow us|share this)", re.I),
    re.compile(r"^(cookie|privacy|terms of service|all rights reserved)", re.I),
    re.compile(r"^(previous|next|back to top|read more|click here|learn more)$", re.I),
    re.compile(r"^\s*[|•·–—]\s*$"),
    re.compile(r"^(.)\1{4,}$"),
    re.compile(r"^\s*\d+\s*$"),
    re.compile(r"^(loading|please wait|javascript)", re.I),
)

NOISE_SECTION_TITLES: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(nav|navigation|menu|header|footer|sidebar|cookie|banner)$", re.I),
    re.compile(r"^(hero|carousel|slider|featured|testimonial)s?$", re.I),
    re.compile(r"^(sign.?up|login|subscribe|newsletter|social)$", re.I),
)

MIN_LINE_CHARS = 5
LONG_LINE_CHARS = 80
MIN_SENTENCE_CHARS = 10
MAX_BULLET_LEN = 160

_WS_RE = re.compile(r"\s+")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_ABBREV_RE = re.compile(r"\b(?:Mr|Mrs|Ms|Dr|Jr|Sr|Inc|Ltd|Co|vs|etc|e\.g|i\.e|approx|dept|est|govt)\.$", re.I)
_DEDUP_STRIP_RE = re.compile(r"[^a-z0-9]")


def is_noisy_section(section_title: str | None) -> bool:
    if not section_title:
        return False
    title = section_title.strip()
    return any(pattern.search(title) for pattern in NOISE_SECTION_TITLES)


def clean_line(line: str) -> str:
    return _WS_RE.sub(" ", line).strip()


def is_noise_line(line: str) -> bool:
    trimmed = line.strip()
    if len(trimmed) < MIN_LINE_CHARS:
        return True
    # long lines are content even with a boilerplate prefix
    if len(trimmed) > LONG_LINE_CHARS:
        return False
    return any(pattern.search(trimmed) for pattern in NOISE_LINE_PATTERNS)


def clean_chunk_text(text: str) -> str:
    """Drop boilerplate lines and collapse the rest into one line."""
    lines = (clean_line(line) for line in text.split("\n"))
    return _WS_RE.sub(" ", " ".join(line for line in lines if not is_noise_line(line))).strip()


def split_sentences(text: str) -> list[str]:
    """Split on terminal punctuation, re-joining splits that follow an abbreviation."""
    merged: list[str] = []
    for segment in _SENTENCE_SPLIT_RE.split(text):
        trimmed = segment.strip()
        if not trimmed:
            continue
        if merged and _ABBREV_RE.search(merged[-1]):
            merged[-1] = f"{merged[-1]} {trimmed}"
        else:
            merged.append(trimmed)
    return [sentence for sentence in merged if len(sentence) >= MIN_SENTENCE_CHARS]


def dedup_key(text: str) -> str:
    return _DEDUP_STRIP_RE.sub("", text.lower())


def deduplicate_spans(spans: Iterable[str]) -> list[str]:
    """Keep the first of any spans that are equal or contained in one another.

    Comparison is on lowercase alphanumerics only. Spans with no alphanumeric
    characters are dropped.
    """
    seen: list[str] = []
    result: list[str] = []
    for span in spans:
        key = dedup_key(span)
        if not key:
            continue
        if any(key == prev or key in prev or prev in key for prev in seen):
            continue
        seen.append(key)
        result.append(span)
    return result


def truncate_bullet(text: str, max_len: int = MAX_BULLET_LEN) -> str:
    if len(text) <= max_len:
        return text
    cut = text[:max_len]
    last_space = cut.rfind(" ")
    return (cut[:last_space] if last_space > max_len * 0.5 else cut) + "..."


__all__ = [
    "NOISE_LINE_PATTERNS",
    "NOISE_SECTION_TITLES",
    "MAX_BULLET_LEN",
    "is_noisy_section",
    "clean_line",
    "is_noise_line",
    "clean_chunk_text",
    "split_sentences",
    "dedup_key",
    "deduplicate_spans",
    "truncate_bullet",
]
