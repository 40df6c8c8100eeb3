"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

SourceTypeName = Literal["article", "pdf", "youtube", "twitter", "tiktok", "unknown"]


class SearchFilters(BaseModel):
    collection: str | None = None
    domain: str | None = None
    source: SourceTypeName | None = Field(default=None, description="Restrict to one source type")
    url: str | None = None

    @field_validator("collection", "domain", "url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    def is_empty(self) -> bool:
        return not any((self.collection, self.domain, self.source, self.url))

    def describe(self) -> str:
        parts = [
            f"{name}={value}"
            for name, value in (
                ("collection", self.collection),
                ("domain", self.domain),
                ("source", self.source),
                ("url", self.url),
            )
            if value
        ]
        return ", ".join(parts) if parts else "none"


class IngestRequest(BaseModel):
    url: str = Field(min_length=1)
    collection: str | None = None
    force: bool = False
    source_weight: float | None = Field(default=None, ge=0)


class IngestResponse(BaseModel):
    job_id: int
    source_id: int
    deduplicated: bool
    report: dict[str, Any]
    summary: str | None = None


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1, le=100)
    filters: SearchFilters | None = None


class RankedChunkResponse(BaseModel):
    id: int
    source_id: int
    chunk_index: int
    text: str
    token_count: int
    section_title: str | None
    semantic_similarity: float
    recency_boost: float
    source_weight: float
    final_score: float
    source_url: str
    source_title: str | None
    source_type: str
    collection: str


class SearchResponse(BaseModel):
    chunks: list[RankedChunkResponse]
    candidate_chunks: int
    candidate_sources: int


class AskRequest(BaseModel):
    question: str = Field(min_length=1)
    filters: SearchFilters | None = None


class AskResponse(BaseModel):
    answer: str


class SourceResponse(BaseModel):
    id: int
    type: str
    url: str
    canonical_url: str
    title: str | None
    author: str | None
    published_at: str | None
    ingested_at: int
    metadata: dict[str, Any]
    source_weight: float
    extraction_method: str
    extraction_confidence: float
    collection: str


class RelationResponse(BaseModel):
    id: int
    parent_source_id: int
    child_source_id: int
    relation_type: str
    created_at: int


class JobResponse(BaseModel):
    id: int
    job_type: str
    status: Literal["running", "done", "failed"]
    payload: dict[str, Any]
    error_text: str | None
    source_id: int | None
    created_at: int
    updated_at: int


class RuntimeSettingsPatch(BaseModel):
    browser_relay_fallback_enabled: bool | None = None
    auto_summary_enabled: bool | None = None


__all__ = [
    "SearchFilters",
    "IngestRequest",
    "IngestResponse",
    "SearchRequest",
    "SearchResponse",
    "RankedChunkResponse",
    "AskRequest",
    "AskResponse",
    "SourceResponse",
    "RelationResponse",
    "JobResponse",
    "RuntimeSettingsPatch",
]
