"""Exception types raised by ingestion and retrieval."""

from __future__ import annotations


class KnowledgeBaseError(Exception):
    """Base class for expected, user-reportable failures."""

    job_id: int | None = None


class ExtractionFailure(KnowledgeBaseError):
    """The extraction collaborator could not produce content for a URL."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Extraction failed for {url}: {reason}")
        self.url = url
        self.reason = reason


class ExtractionTimeout(ExtractionFailure):
    """Extraction exceeded the configured timeout."""

    def __init__(self, url: str, timeout_seconds: float) -> None:
        super().__init__(url, f"timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class UnsupportedSourceError(ExtractionFailure):
    """No extractor strategy can handle the URL."""


class EmptyContentFailure(KnowledgeBaseError):
    """Extracted text produced zero chunks; nothing was persisted for the source."""

    def __init__(self, url: str) -> None:
        super().__init__(f"Ingest produced zero chunks for {url} (empty content after extraction)")
        self.url = url


__all__ = [
    "KnowledgeBaseError",
    "ExtractionFailure",
    "ExtractionTimeout",
    "UnsupportedSourceError",
    "EmptyContentFailure",
]
