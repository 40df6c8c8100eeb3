"""Ingest pipeline orchestration."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import orjson

from personal_kb.core.config import Settings
from personal_kb.core.errors import KnowledgeBaseError
from personal_kb.core.logging import JobLogAdapter, get_logger, job_logger
from personal_kb.core.metrics import INDEX_SIZE, INGEST_DURATION, INGEST_OUTCOMES
from personal_kb.db.observability import log_ingest_event, record_job_metric
from personal_kb.db.settings import get_runtime_settings
from personal_kb.db.sqlite import SQLiteDatabase
from personal_kb.ingest.crawler import RelationGraphCrawler
from personal_kb.ingest.summary import build_ingestion_summary
from personal_kb.ingest.types import CrawlReport, EmbeddingProvider, Extractor, IngestOutcome
from personal_kb.models.entities import Job, Source, SourceRelation
from personal_kb.retrieval.ranking import RankingEngine
from personal_kb.retrieval.vector_index import VectorIndex
from personal_kb.utils.time import now_ms

logger = get_logger(__name__)


class IngestPipeline:
    """Coordinate crawling, chunking, embeddings, and job bookkeeping."""

    def __init__(
        self,
        database: SQLiteDatabase,
        settings: Settings,
        extractor: Extractor,
        embedder: EmbeddingProvider,
        ranking: RankingEngine | None = None,
        vector_index: VectorIndex | None = None,
    ) -> None:
        self.db = database
        self.settings = settings
        self.ranking = ranking or RankingEngine.from_settings(settings)
        self.vector_index = vector_index
        self.crawler = RelationGraphCrawler(
            db=database,
            settings=settings,
            extractor=extractor,
            embedder=embedder,
            ranking=self.ranking,
            vector_index=vector_index,
        )
        # One crawl at a time: dedup lookups and source inserts must not interleave.
        self._crawl_lock = asyncio.Lock()

    async def ingest_url(
        self,
        url: str,
        collection: str | None = None,
        force: bool = False,
        source_weight: float | None = None,
    ) -> IngestOutcome:
        collection = (collection or "").strip() or self.settings.default_collection
        job_id = self._start_job({"url": url, "collection": collection, "force": force})
        log = job_logger(logger, job_id, url)
        log_ingest_event(self.db, "job_started", job_id=job_id, source_url=url, event={"collection": collection})
        started = time.perf_counter()

        try:
            async with self._crawl_lock:
                report = await self.crawler.crawl(
                    url,
                    collection=collection,
                    force=force,
                    source_weight=source_weight,
                    job_id=job_id,
                )
            if report.root_source_id is None:
                raise KnowledgeBaseError(f"Ingest of {url} finished without a root source")
        except KnowledgeBaseError as exc:
            exc.job_id = job_id
            self._fail(url, exc, started, log)
            raise
        except Exception as exc:
            log.exception("Ingest job failed: %s", exc)
            self._fail(url, exc, started, log)
            raise

        duration = time.perf_counter() - started
        self._finish_job(job_id, "done", source_id=report.root_source_id)
        self._record_success(url, report, duration, log)

        summary = None
        if report.root_content is not None and get_runtime_settings(self.db).auto_summary_enabled:
            summary = build_ingestion_summary(url, report.root_source_id, report.root_content, report.root_chunk_count)

        return IngestOutcome(
            job_id=job_id,
            source_id=report.root_source_id,
            deduplicated=report.root_deduplicated,
            report=report,
            summary=summary,
        )

    # Browsing helpers -------------------------------------------------

    def get_source(self, source_id: int) -> Source | None:
        row = self.db.query_one("SELECT * FROM sources WHERE id = ?", [source_id])
        return Source.from_row(row) if row is not None else None

    def list_sources(self, collection: str | None = None, limit: int = 100) -> list[Source]:
        if collection:
            rows = self.db.query(
                "SELECT * FROM sources WHERE collection = ? ORDER BY id DESC LIMIT ?", [collection, limit]
            )
        else:
            rows = self.db.query("SELECT * FROM sources ORDER BY id DESC LIMIT ?", [limit])
        return [Source.from_row(row) for row in rows]

    def list_collections(self) -> dict[str, int]:
        rows = self.db.query(
            "SELECT collection, COUNT(*) AS count FROM sources GROUP BY collection ORDER BY collection"
        )
        return {row["collection"]: int(row["count"]) for row in rows}

    def get_relations(self, source_id: int) -> list[SourceRelation]:
        rows = self.db.query(
            """
            SELECT * FROM source_relations
            WHERE parent_source_id = ? OR child_source_id = ?
            ORDER BY id
            """,
            [source_id, source_id],
        )
        return [SourceRelation.from_row(row) for row in rows]

    def get_job(self, job_id: int) -> Job | None:
        row = self.db.query_one("SELECT * FROM jobs WHERE id = ?", [job_id])
        return Job.from_row(row) if row is not None else None

    # Internal helpers -------------------------------------------------

    def _start_job(self, payload: dict[str, Any]) -> int:
        now = now_ms()
        return self.db.insert(
            "INSERT INTO jobs (job_type, status, payload_json, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            ["ingest", "running", orjson.dumps(payload).decode("utf-8"), now, now],
        )

    def _finish_job(
        self,
        job_id: int,
        status: str,
        source_id: int | None = None,
        detail: str | None = None,
    ) -> None:
        self.db.write(
            "UPDATE jobs SET status = ?, error_text = ?, source_id = ?, updated_at = ? WHERE id = ? AND status = 'running'",
            [status, detail, source_id, now_ms(), job_id],
        )

    def _fail(self, url: str, exc: BaseException, started: float, log: JobLogAdapter) -> None:
        job_id = log.job_id
        message = str(exc) or exc.__class__.__name__
        self._finish_job(job_id, "failed", detail=message)
        duration = time.perf_counter() - started
        INGEST_OUTCOMES.labels(outcome="failed").inc()
        record_job_metric(self.db, "duration_ms", duration * 1000, job_id=job_id)
        log_ingest_event(
            self.db,
            "job_failed",
            job_id=job_id,
            source_url=url,
            level="error",
            event={"error": message, "error_type": exc.__class__.__name__},
        )
        log.warning("Ingest failed for %s: %s", url, message)

    def _record_success(self, url: str, report: CrawlReport, duration: float, log: JobLogAdapter) -> None:
        job_id = log.job_id
        outcome = "deduplicated" if report.root_deduplicated else "done"
        INGEST_OUTCOMES.labels(outcome=outcome).inc()
        INGEST_DURATION.labels(source_type=report.root_type or "existing").observe(duration)
        for name, value in (
            ("duration_ms", duration * 1000),
            ("chunks_written", report.chunk_count),
            ("sources_created", len(report.created)),
            ("relations_linked", len(report.edges)),
            ("related_failures", len(report.failures)),
        ):
            record_job_metric(self.db, name, value, job_id=job_id)
        log_ingest_event(
            self.db,
            "job_done",
            job_id=job_id,
            source_url=url,
            source_id=report.root_source_id,
            event=report.to_dict(),
        )
        self._update_index_metric()
        log.info("Ingest job finished", extra={"ctx_source_id": report.root_source_id, "ctx_outcome": outcome})

    def _update_index_metric(self) -> None:
        if self.vector_index is not None:
            INDEX_SIZE.set(self.vector_index.size)
        else:
            row = self.db.query_one("SELECT COUNT(*) AS count FROM chunks")
            INDEX_SIZE.set(int(row["count"]) if row else 0)


__all__ = ["IngestPipeline"]
