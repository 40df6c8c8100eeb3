"""Human-readable ingestion summaries."""

from __future__ import annotations

from personal_kb.ingest.types import ExtractedContent
from personal_kb.utils.text import preview

PREVIEW_CHARS = 280


def build_ingestion_summary(url: str, source_id: int, content: ExtractedContent, chunk_count: int) -> str:
    lines = [
        f"Ingested source #{source_id}",
        f"URL: {url}",
        f"Type: {content.type}",
        f"Method: {content.extraction_method} (confidence {content.extraction_confidence:.2f})",
        f"Chunks: {chunk_count}",
    ]
    if content.title:
        lines.insert(1, f"Title: {content.title}")
    excerpt = preview(content.text or "", PREVIEW_CHARS)
    if excerpt:
        lines.append(f"Preview: {excerpt}")
    return "\n".join(lines)


__all__ = ["build_ingestion_summary"]
