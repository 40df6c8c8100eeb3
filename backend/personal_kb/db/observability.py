"""Append-only ingest logs, job metrics, and health reporting."""

from __future__ import annotations

from typing import Any, Literal, Mapping

import orjson

from personal_kb.db.sqlite import SQLiteDatabase
from personal_kb.utils.time import DAY_MS, now_ms

LogLevel = Literal["info", "warn", "error"]


def log_ingest_event(
    db: SQLiteDatabase,
    event_type: str,
    *,
    job_id: int | None = None,
    source_url: str | None = None,
    source_id: int | None = None,
    level: LogLevel = "info",
    event: Mapping[str, Any] | None = None,
) -> None:
    db.insert(
        """
        INSERT INTO ingest_logs (job_id, source_url, source_id, level, event_type, event_json, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        [
            job_id,
            source_url,
            source_id,
            level,
            event_type,
            orjson.dumps(dict(event or {}), default=str).decode("utf-8"),
            now_ms(),
        ],
    )


def record_job_metric(
    db: SQLiteDatabase,
    metric_name: str,
    metric_value: float,
    *,
    job_id: int | None = None,
    labels: Mapping[str, Any] | None = None,
) -> None:
    db.insert(
        "INSERT INTO job_metrics (job_id, metric_name, metric_value, labels_json, created_at) VALUES (?, ?, ?, ?, ?)",
        [job_id, metric_name, float(metric_value), orjson.dumps(dict(labels or {})).decode("utf-8"), now_ms()],
    )


def health_status(db: SQLiteDatabase) -> dict[str, Any]:
    """Summarise store health for the /health endpoint and CLI."""
    db_ok = db.query_one("SELECT 1 AS ok") is not None
    source_count = int(db.query_one("SELECT COUNT(*) AS c FROM sources")["c"])
    chunk_count = int(db.query_one("SELECT COUNT(*) AS c FROM chunks")["c"])
    jobs = db.query_one(
        """
        SELECT
          SUM(CASE WHEN status = 'running' THEN 1 ELSE 0 END) AS running,
          SUM(CASE WHEN status = 'done' THEN 1 ELSE 0 END) AS done,
          SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) AS failed
        FROM jobs
        """
    )
    recent_failures = int(
        db.query_one(
            "SELECT COUNT(*) AS c FROM jobs WHERE status = 'failed' AND created_at >= ?",
            [now_ms() - DAY_MS],
        )["c"]
    )
    return {
        "db_ok": db_ok,
        "source_count": source_count,
        "chunk_count": chunk_count,
        "jobs": {
            "running": int(jobs["running"] or 0),
            "done": int(jobs["done"] or 0),
            "failed": int(jobs["failed"] or 0),
        },
        "recent_failures_24h": recent_failures,
    }


__all__ = ["log_ingest_event", "record_job_metric", "health_status"]
