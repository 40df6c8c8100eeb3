"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any

import orjson


@dataclass(slots=True)
class Source:
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

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Source":
        return cls(
            id=int(row["id"]),
            type=row["type"],
            url=row["url"],
            canonical_url=row["canonical_url"],
            title=row["title"],
            author=row["author"],
            published_at=row["published_at"],
            ingested_at=int(row["ingested_at"]),
            metadata=_load_json(row["metadata_json"]),
            source_weight=float(row["source_weight"]),
            extraction_method=row["extraction_method"],
            extraction_confidence=float(row["extraction_confidence"]),
            collection=row["collection"],
        )


@dataclass(slots=True)
class SourceRelation:
    id: int
    parent_source_id: int
    child_source_id: int
    relation_type: str
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SourceRelation":
        return cls(
            id=int(row["id"]),
            parent_source_id=int(row["parent_source_id"]),
            child_source_id=int(row["child_source_id"]),
            relation_type=row["relation_type"],
            created_at=int(row["created_at"]),
        )


@dataclass(slots=True)
class Job:
    id: int
    job_type: str
    status: str
    payload: dict[str, Any]
    error_text: str | None
    source_id: int | None
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Job":
        return cls(
            id=int(row["id"]),
            job_type=row["job_type"],
            status=row["status"],
            payload=_load_json(row["payload_json"]),
            error_text=row["error_text"],
            source_id=row["source_id"],
            created_at=int(row["created_at"]),
            updated_at=int(row["updated_at"]),
        )


def _load_json(value: str | None) -> dict[str, Any]:
    if not value:
        return {}
    try:
        loaded = orjson.loads(value)
    except orjson.JSONDecodeError:
        return {}
    return loaded if isinstance(loaded, dict) else {}


@dataclass(slots=True)
class RankedChunk:
    """A chunk scored against a query, joined with its source fields."""

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

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "chunk_index": self.chunk_index,
            "text": self.text,
            "token_count": self.token_count,
            "section_title": self.section_title,
            "semantic_similarity": self.semantic_similarity,
            "recency_boost": self.recency_boost,
            "source_weight": self.source_weight,
            "final_score": self.final_score,
            "source_url": self.source_url,
            "source_title": self.source_title,
            "source_type": self.source_type,
            "collection": self.collection,
        }


@dataclass(slots=True)
class Citation:
    index: int
    title: str
    url: str
