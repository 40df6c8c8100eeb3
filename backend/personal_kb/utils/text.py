"""Text processing helpers."""

from __future__ import annotations

import re


WHITESPACE_RE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def preview(text: str, limit: int = 280) -> str:
    """Single-line prefix of text with an ellipsis when cut."""
    flat = normalize(text)
    if len(flat) <= limit:
        return flat
    return flat[:limit] + "…"
