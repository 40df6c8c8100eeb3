"""Bounded relation-graph crawl for one top-level ingest."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass

import orjson

from personal_kb.core.config import Settings
from personal_kb.core.errors import (
    EmptyContentFailure,
    ExtractionFailure,
    ExtractionTimeout,
    KnowledgeBaseError,
)
from personal_kb.core.logging import JobLogAdapter, get_logger, job_logger
from personal_kb.core.metrics import CRAWL_RELATIONS, INDEX_SIZE
from personal_kb.db.observability import log_ingest_event
from personal_kb.db.sqlite import SQLiteDatabase
from personal_kb.ingest.chunker import plan_chunks
from personal_kb.ingest.dedupe import DedupIndex, canonicalize
from personal_kb.ingest.embeddings import vector_to_bytes
from personal_kb.ingest.types import (
    ChunkPayload,
    CrawlFailure,
    CrawlReport,
    EmbeddingProvider,
    ExtractedContent,
    Extractor,
    SourceBundle,
)
from personal_kb.retrieval.ranking import RankingEngine
from personal_kb.retrieval.vector_index import VectorIndex
from personal_kb.utils.time import now_ms

logger = get_logger(__name__)


@dataclass(slots=True)
class FrontierItem:
    url: str
    depth: int
    parent_id: int | None = None
    relation_type: str | None = None


class RelationGraphCrawler:
    """Ingest a URL and the sources it replies to, quotes, or links to.

    The frontier is FIFO and owned by a single ``crawl`` call together with its
    ``visited`` map (canonical URL -> resolved source id, ``None`` until known or
    after a failure). Each canonical URL gets at most one extraction attempt per
    call. Only the root URL's failure propagates; child failures are recorded on
    the report.
    """

    def __init__(
        self,
        db: SQLiteDatabase,
        settings: Settings,
        extractor: Extractor,
        embedder: EmbeddingProvider,
        ranking: RankingEngine,
        vector_index: VectorIndex | None = None,
    ) -> None:
        self.db = db
        self.settings = settings
        self.extractor = extractor
        self.embedder = embedder
        self.ranking = ranking
        self.vector_index = vector_index
        self.dedup = DedupIndex(db)

    async def crawl(
        self,
        url: str,
        collection: str,
        force: bool = False,
        source_weight: float | None = None,
        job_id: int | None = None,
    ) -> CrawlReport:
        report = CrawlReport(root_url=url)
        log = job_logger(logger, job_id, url)
        visited: dict[str, int | None] = {}
        frontier: deque[FrontierItem] = deque([FrontierItem(url=url, depth=0)])
        attempts = 0

        while frontier:
            item = frontier.popleft()
            is_root = item.parent_id is None
            canonical = canonicalize(item.url)

            if canonical in visited:
                target_id = visited[canonical]
                if target_id is not None and item.parent_id is not None:
                    self._link(report, item.parent_id, target_id, item.relation_type, log)
                continue
            visited[canonical] = None

            # Forced re-ingest keeps the old rows until the replacement is fully written.
            replaced: list[int] = []
            existing_id = self.dedup.find_existing(canonical)
            if existing_id is not None and is_root and force:
                replaced = self._source_ids_for(canonical)
                existing_id = None
            if existing_id is not None:
                visited[canonical] = existing_id
                report.deduplicated.append(existing_id)
                if is_root:
                    report.root_source_id = existing_id
                else:
                    self._link(report, item.parent_id, existing_id, item.relation_type, log)
                log.info("Source already ingested", extra={"ctx_url": item.url, "ctx_source_id": existing_id})
                continue

            if attempts >= self.settings.crawl_max_sources:
                self._record_failure(report, item, "crawl source limit reached", log)
                continue
            attempts += 1

            try:
                bundle = await self._extract(item.url)
                chunks = plan_chunks(
                    bundle.source,
                    max_tokens=self.settings.chunk_max_tokens,
                    overlap_tokens=self.settings.chunk_overlap_tokens,
                    section_max_tokens=self.settings.section_max_tokens,
                )
                if not chunks:
                    raise EmptyContentFailure(item.url)
                weight = source_weight if is_root and source_weight is not None else None
                source_id = await self._persist(item, canonical, bundle.source, chunks, collection, weight, report, log)
                if replaced:
                    self._replace_sources(replaced, source_id, log)
            except KnowledgeBaseError as exc:
                if is_root:
                    raise
                self._record_failure(report, item, str(exc), log)
                continue
            except Exception as exc:
                if is_root:
                    raise
                log.exception("Unexpected error ingesting related source", extra={"ctx_url": item.url})
                self._record_failure(report, item, str(exc) or exc.__class__.__name__, log)
                continue

            visited[canonical] = source_id
            report.created.append(source_id)
            report.chunk_count += len(chunks)
            if is_root:
                report.root_source_id = source_id
                report.root_type = bundle.source.type
                report.root_content = bundle.source
                report.root_chunk_count = len(chunks)

            if item.depth >= self.settings.crawl_max_depth:
                continue
            for related in bundle.related:
                if canonicalize(related.url) == canonical:
                    continue
                frontier.append(
                    FrontierItem(
                        url=related.url,
                        depth=item.depth + 1,
                        parent_id=source_id,
                        relation_type=related.relation_type,
                    )
                )

        return report

    async def _extract(self, url: str) -> SourceBundle:
        timeout = self.settings.extraction_timeout_seconds
        try:
            return await asyncio.wait_for(self.extractor.extract(url), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ExtractionTimeout(url, timeout) from exc
        except KnowledgeBaseError:
            raise
        except Exception as exc:
            raise ExtractionFailure(url, str(exc) or exc.__class__.__name__) from exc

    async def _persist(
        self,
        item: FrontierItem,
        canonical: str,
        content: ExtractedContent,
        chunks: list[ChunkPayload],
        collection: str,
        source_weight: float | None,
        report: CrawlReport,
        log: JobLogAdapter,
    ) -> int:
        weight = source_weight if source_weight is not None else self.ranking.source_weight_for(content.type)
        source_id = self.db.insert(
            """
            INSERT INTO sources (
              type, url, canonical_url, title, author, published_at, ingested_at, metadata_json,
              source_weight, extraction_method, extraction_confidence, collection
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                content.type,
                item.url,
                canonical,
                content.title,
                content.author,
                content.published_at,
                now_ms(),
                orjson.dumps(content.metadata or {}, default=str).decode("utf-8"),
                float(weight),
                content.extraction_method,
                float(content.extraction_confidence),
                collection,
            ],
        )
        try:
            if item.parent_id is not None:
                self._link(report, item.parent_id, source_id, item.relation_type, log)
            await self._write_chunks(source_id, chunks)
        except BaseException:
            self._delete_source(source_id)
            report.edges[:] = [edge for edge in report.edges if source_id not in edge[:2]]
            raise

        log_ingest_event(
            self.db,
            "source_created",
            job_id=log.job_id,
            source_url=item.url,
            source_id=source_id,
            event={"type": content.type, "chunks": len(chunks), "depth": item.depth},
        )
        log.info(
            "Ingested source",
            extra={"ctx_url": item.url, "ctx_source_id": source_id, "ctx_chunks": len(chunks)},
        )
        return source_id

    async def _write_chunks(self, source_id: int, chunks: list[ChunkPayload]) -> None:
        chunk_ids: list[int] = []
        vectors: list[list[float]] = []
        for chunk in chunks:
            vector = [float(value) for value in await self.embedder.embed(chunk.text)]
            chunk_id = self.db.insert(
                """
                INSERT INTO chunks (source_id, chunk_index, text, token_count, embedding, dim, section_title, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    source_id,
                    chunk.index,
                    chunk.text,
                    chunk.token_count,
                    vector_to_bytes(vector),
                    len(vector),
                    chunk.section_title,
                    now_ms(),
                ],
            )
            chunk_ids.append(chunk_id)
            vectors.append(vector)
        if self.vector_index is not None:
            self.vector_index.upsert(chunk_ids, vectors)
            INDEX_SIZE.set(self.vector_index.size)

    def _link(
        self,
        report: CrawlReport,
        parent_id: int | None,
        child_id: int,
        relation_type: str | None,
        log: JobLogAdapter,
    ) -> None:
        if parent_id is None or relation_type is None or parent_id == child_id:
            return
        inserted = self.db.write(
            """
            INSERT OR IGNORE INTO source_relations (parent_source_id, child_source_id, relation_type, created_at)
            VALUES (?, ?, ?, ?)
            """,
            [parent_id, child_id, relation_type, now_ms()],
        )
        if inserted:
            report.edges.append((parent_id, child_id, relation_type))
            CRAWL_RELATIONS.labels(relation_type=relation_type).inc()
            log.debug("Linked %s -> %s (%s)", parent_id, child_id, relation_type)

    def _record_failure(self, report: CrawlReport, item: FrontierItem, error: str, log: JobLogAdapter) -> None:
        report.failures.append(
            CrawlFailure(url=item.url, error=error, depth=item.depth, relation_type=item.relation_type)
        )
        log.warning("Related source failed: %s", error, extra={"ctx_url": item.url})
        log_ingest_event(
            self.db,
            "related_failed",
            job_id=log.job_id,
            source_url=item.url,
            level="warn",
            event={"error": error, "depth": item.depth, "relation_type": item.relation_type},
        )

    def _source_ids_for(self, canonical: str) -> list[int]:
        rows = self.db.query("SELECT id FROM sources WHERE canonical_url = ? OR url = ?", [canonical, canonical])
        return [int(row["id"]) for row in rows]

    def _replace_sources(self, old_ids: list[int], new_id: int, log: JobLogAdapter) -> None:
        """Drop superseded rows and move their incoming edges onto ``new_id``."""
        placeholders = ", ".join("?" for _ in old_ids)
        incoming = self.db.query(
            f"""
            SELECT DISTINCT parent_source_id, relation_type FROM source_relations
            WHERE child_source_id IN ({placeholders}) AND parent_source_id NOT IN ({placeholders})
            """,
            [*old_ids, *old_ids],
        )
        for old_id in old_ids:
            self._delete_source(old_id)
        for row in incoming:
            parent_id = int(row["parent_source_id"])
            if parent_id == new_id:
                continue
            self.db.write(
                """
                INSERT OR IGNORE INTO source_relations (parent_source_id, child_source_id, relation_type, created_at)
                VALUES (?, ?, ?, ?)
                """,
                [parent_id, new_id, row["relation_type"], now_ms()],
            )
        log.info("Replaced source", extra={"ctx_source_id": new_id, "ctx_replaced": old_ids})

    def _delete_source(self, source_id: int) -> None:
        chunk_ids = [int(row["id"]) for row in self.db.query("SELECT id FROM chunks WHERE source_id = ?", [source_id])]
        with self.db.transaction() as cursor:
            cursor.execute("DELETE FROM chunks WHERE source_id = ?", [source_id])
            cursor.execute(
                "DELETE FROM source_relations WHERE parent_source_id = ? OR child_source_id = ?",
                [source_id, source_id],
            )
            cursor.execute("DELETE FROM sources WHERE id = ?", [source_id])
        if self.vector_index is not None and chunk_ids:
            self.vector_index.remove(chunk_ids)
            INDEX_SIZE.set(self.vector_index.size)


__all__ = ["RelationGraphCrawler", "FrontierItem"]
