"""Search orchestration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from personal_kb.core.config import Settings
from personal_kb.core.logging import get_logger
from personal_kb.db.sqlite import SQLiteDatabase
from personal_kb.ingest.dedupe import canonicalize, extract_domain, normalize_domain
from personal_kb.ingest.embeddings import vector_from_bytes
from personal_kb.ingest.types import EmbeddingProvider
from personal_kb.models.dto import SearchFilters
from personal_kb.models.entities import Citation, RankedChunk
from personal_kb.retrieval.offers import OfferCatalog
from personal_kb.retrieval.ranking import RankingEngine
from personal_kb.retrieval.synthesize import synthesize
from personal_kb.retrieval.vector_index import LinearScanIndex, VectorIndex
from personal_kb.utils.time import now_ms

logger = get_logger(__name__)

LOW_CONFIDENCE_NOTE = (
    "  Note: Confidence is low — results may be loosely related. "
    "Try narrower filters or ingest more relevant content."
)


@dataclass(slots=True)
class SearchResult:
    chunks: list[RankedChunk] = field(default_factory=list)
    candidate_chunks: int = 0
    candidate_sources: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "chunks": [chunk.to_dict() for chunk in self.chunks],
            "candidate_chunks": self.candidate_chunks,
            "candidate_sources": self.candidate_sources,
        }


class QueryService:
    """Coordinates filtered retrieval, ranking, and answer synthesis."""

    def __init__(
        self,
        db: SQLiteDatabase,
        settings: Settings,
        embedder: EmbeddingProvider,
        ranking: RankingEngine | None = None,
        vector_index: VectorIndex | None = None,
        catalog: OfferCatalog | None = None,
    ) -> None:
        self.db = db
        self.settings = settings
        self.embedder = embedder
        self.ranking = ranking or RankingEngine.from_settings(settings)
        self.vector_index = vector_index or LinearScanIndex(settings.embedding_dim)
        self.catalog = catalog or OfferCatalog(settings.offer_catalog)

    async def search(
        self,
        query: str,
        limit: int | None = None,
        filters: SearchFilters | None = None,
    ) -> SearchResult:
        """Score every chunk that passes the filters and return the top ``limit``.

        Collection, type and URL filters run in SQL; the domain filter needs URL
        parsing and runs here. Candidate counts are taken after all filters and
        before the limit.
        """
        limit = limit or self.settings.search_limit
        filters = filters or SearchFilters()
        query_vector = list(await self.embedder.embed(query))

        rows = self._candidate_rows(filters)
        if filters.domain:
            target = normalize_domain(filters.domain)
            rows = [row for row in rows if extract_domain(row["source_url"]) == target]

        candidate_chunks = len(rows)
        candidate_sources = len({row["source_id"] for row in rows})

        vectors = [(int(row["id"]), vector_from_bytes(row["embedding"])) for row in rows]
        similarities = self.vector_index.similarities(query_vector, vectors)
        now = now_ms()
        scored: list[RankedChunk] = []
        for row, semantic in zip(rows, similarities):
            recency = self.ranking.recency_boost(row["ingested_at"], now=now)
            weight = float(row["source_weight"] if row["source_weight"] is not None else 1.0)
            scored.append(
                RankedChunk(
                    id=int(row["id"]),
                    source_id=int(row["source_id"]),
                    chunk_index=int(row["chunk_index"]),
                    text=row["text"],
                    token_count=int(row["token_count"]),
                    section_title=row["section_title"] or None,
                    semantic_similarity=semantic,
                    recency_boost=recency,
                    source_weight=weight,
                    final_score=self.ranking.score(semantic, recency, weight),
                    source_url=row["source_url"],
                    source_title=row["source_title"],
                    source_type=row["source_type"],
                    collection=row["collection"],
                )
            )
        scored.sort(key=lambda chunk: chunk.final_score, reverse=True)

        return SearchResult(
            chunks=scored[:limit],
            candidate_chunks=candidate_chunks,
            candidate_sources=candidate_sources,
        )

    async def answer(self, question: str, filters: SearchFilters | None = None) -> str:
        filters = filters or SearchFilters()
        result = await self.search(question, limit=self.settings.answer_limit, filters=filters)
        active = filters.describe()

        if not result.chunks:
            return _no_results_message(filters)

        citations: dict[int, Citation] = {}
        for chunk in result.chunks:
            if chunk.source_id not in citations:
                citations[chunk.source_id] = Citation(
                    index=len(citations) + 1,
                    title=chunk.source_title or "Untitled",
                    url=chunk.source_url,
                )

        synthesis = synthesize(question, result.chunks, citations, self.catalog)
        logger.info(
            "Answered question",
            extra={
                "ctx_returned": len(result.chunks),
                "ctx_structured": synthesis.is_structured,
                "ctx_low_confidence": synthesis.low_confidence,
            },
        )

        lines = ["Answer:", *synthesis.answer_lines]
        if synthesis.low_confidence:
            lines.extend(["", LOW_CONFIDENCE_NOTE])
        lines.extend(["", "Citations:"])
        lines.extend(
            f"  [{citation.index}] {citation.title} ({citation.url})"
            for citation in sorted(citations.values(), key=lambda item: item.index)
        )
        lines.extend(
            [
                "",
                "Retrieval context:",
                f"  Filters: {active}",
                f"  Candidate chunks: {result.candidate_chunks}",
                f"  Candidate sources: {result.candidate_sources}",
                f"  Returned: {len(result.chunks)} chunks",
            ]
        )
        return "\n".join(lines)

    def _candidate_rows(self, filters: SearchFilters) -> list[Any]:
        conditions: list[str] = []
        params: list[Any] = []
        if filters.collection:
            conditions.append("s.collection = ?")
            params.append(filters.collection)
        if filters.source:
            conditions.append("s.type = ?")
            params.append(filters.source)
        if filters.url:
            conditions.append("(s.url = ? OR s.canonical_url = ?)")
            params.extend([filters.url, canonicalize(filters.url)])
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        return self.db.query(
            f"""
            SELECT
              c.id, c.source_id, c.chunk_index, c.text, c.token_count, c.embedding, c.section_title,
              s.url AS source_url, s.title AS source_title, s.ingested_at, s.source_weight,
              s.type AS source_type, s.collection
            FROM chunks c
            JOIN sources s ON s.id = c.source_id
            {where_clause}
            ORDER BY c.id
            """,
            params,
        )


def _no_results_message(filters: SearchFilters) -> str:
    lines = ["No matching knowledge found."]
    if not filters.is_empty():
        lines.append(f"\nActive filters: {filters.describe()}")
        lines.append("\nTry broadening your search:")
        lines.append('  pkb ask "your question"                  # no filters')
        lines.append("  pkb collections                          # see available collections")
    else:
        lines.append("Ingest some content first:")
        lines.append("  pkb ingest <url>")
    return "\n".join(lines)


__all__ = ["QueryService", "SearchResult", "SearchFilters", "LOW_CONFIDENCE_NOTE"]
