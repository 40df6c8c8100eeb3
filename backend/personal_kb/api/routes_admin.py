"""Administrative routes for the knowledge base."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from personal_kb.api.dependencies import get_database, get_ingest_pipeline
from personal_kb.core.metrics import metrics_response
from personal_kb.db.observability import health_status
from personal_kb.db.settings import RuntimeSettings, get_runtime_settings, update_runtime_settings
from personal_kb.db.sqlite import SQLiteDatabase
from personal_kb.ingest.pipeline import IngestPipeline
from personal_kb.models.dto import JobResponse, RelationResponse, RuntimeSettingsPatch, SourceResponse

router = APIRouter()


@router.get("/sources", response_model=list[SourceResponse], summary="List ingested sources")
async def list_sources(
    collection: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> list[SourceResponse]:
    return [SourceResponse(**asdict(source)) for source in pipeline.list_sources(collection, limit=limit)]


@router.get(
    "/sources/{source_id}/relations",
    response_model=list[RelationResponse],
    summary="Relation edges touching a source",
)
async def list_relations(
    source_id: int,
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> list[RelationResponse]:
    if pipeline.get_source(source_id) is None:
        raise HTTPException(status_code=404, detail="Source not found")
    return [RelationResponse(**asdict(relation)) for relation in pipeline.get_relations(source_id)]


@router.get("/collections", summary="Source count per collection")
async def list_collections(pipeline: IngestPipeline = Depends(get_ingest_pipeline)) -> dict[str, int]:
    return pipeline.list_collections()


@router.get("/jobs/{job_id}", response_model=JobResponse, summary="Inspect an ingest job")
async def get_job(job_id: int, pipeline: IngestPipeline = Depends(get_ingest_pipeline)) -> JobResponse:
    job = pipeline.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse(**asdict(job))


@router.get("/settings", response_model=RuntimeSettings, summary="Current runtime settings")
async def read_settings(db: SQLiteDatabase = Depends(get_database)) -> RuntimeSettings:
    return get_runtime_settings(db)


@router.patch("/settings", response_model=RuntimeSettings, summary="Update runtime settings")
async def patch_settings(
    patch: RuntimeSettingsPatch,
    db: SQLiteDatabase = Depends(get_database),
) -> RuntimeSettings:
    return update_runtime_settings(db, patch.model_dump(exclude_none=True))


@router.get("/health", summary="Database, job and failure overview")
def health(db: SQLiteDatabase = Depends(get_database)) -> dict[str, Any]:
    status = health_status(db)
    return {"ok": status["db_ok"], **status}


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["router"]
