"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, Sequence

SourceType = Literal["article", "pdf", "youtube", "twitter", "tiktok", "unknown"]
RelationType = Literal["thread_reply", "quote_of", "links_to"]
ExtractionMethod = Literal["web_fetch", "browser_relay", "api"]

SOURCE_TYPES: tuple[str, ...] = ("article", "pdf", "youtube", "twitter", "tiktok", "unknown")
RELATION_TYPES: tuple[str, ...] = ("thread_reply", "quote_of", "links_to")


@dataclass(slots=True)
class Section:
    """Titled slice of extracted text."""

    title: str | None
    text: str


@dataclass(slots=True)
class ExtractedContent:
    """Normalized record produced by an extractor for one URL."""

    type: str
    text: str
    title: str | None = None
    author: str | None = None
    published_at: str | None = None
    sections: list[Section] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    extraction_method: str = "web_fetch"
    extraction_confidence: float = 0.0


@dataclass(slots=True)
class RelatedLink:
    relation_type: str
    url: str


@dataclass(slots=True)
class SourceBundle:
    """Extraction result: the content itself plus URLs it points at."""

    source: ExtractedContent
    related: list[RelatedLink] = field(default_factory=list)


@dataclass(slots=True)
class ChunkPayload:
    """Chunk produced by the chunker prior to persistence."""

    index: int
    text: str
    token_count: int
    section_title: str | None = None


@dataclass(slots=True)
class CrawlFailure:
    url: str
    error: str
    depth: int
    relation_type: str | None = None


@dataclass(slots=True)
class CrawlReport:
    """Outcome of one top-level crawl."""

    root_source_id: int | None = None
    root_url: str | None = None
    root_type: str | None = None
    created: list[int] = field(default_factory=list)
    deduplicated: list[int] = field(default_factory=list)
    edges: list[tuple[int, int, str]] = field(default_factory=list)
    failures: list[CrawlFailure] = field(default_factory=list)
    chunk_count: int = 0
    root_chunk_count: int = 0
    root_content: ExtractedContent | None = None

    @property
    def root_deduplicated(self) -> bool:
        return self.root_source_id is not None and self.root_source_id in self.deduplicated

    def to_dict(self) -> dict[str, Any]:
        return {
            "root_source_id": self.root_source_id,
            "created": list(self.created),
            "deduplicated": list(self.deduplicated),
            "edges": [
                {"parent_source_id": parent, "child_source_id": child, "relation_type": relation}
                for parent, child, relation in self.edges
            ],
            "failures": [
                {"url": failure.url, "error": failure.error, "depth": failure.depth}
                for failure in self.failures
            ],
            "chunk_count": self.chunk_count,
            "root_chunk_count": self.root_chunk_count,
        }


@dataclass(slots=True)
class IngestOutcome:
    """Result returned by the orchestrator for one ingest call."""

    job_id: int
    source_id: int
    deduplicated: bool
    report: CrawlReport
    summary: str | None = None


class Extractor(Protocol):
    async def extract(self, url: str) -> SourceBundle:
        ...


class EmbeddingProvider(Protocol):
    dim: int

    async def embed(self, text: str) -> Sequence[float]:
        ...


__all__ = [
    "SourceType",
    "RelationType",
    "ExtractionMethod",
    "SOURCE_TYPES",
    "RELATION_TYPES",
    "Section",
    "ExtractedContent",
    "RelatedLink",
    "SourceBundle",
    "ChunkPayload",
    "CrawlFailure",
    "CrawlReport",
    "IngestOutcome",
    "Extractor",
    "EmbeddingProvider",
]
