"""Ingest API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from personal_kb.api.dependencies import get_ingest_pipeline
from personal_kb.core.errors import KnowledgeBaseError
from personal_kb.ingest.pipeline import IngestPipeline
from personal_kb.models.dto import IngestRequest, IngestResponse

router = APIRouter()


@router.post(
    "",
    response_model=IngestResponse,
    summary="Ingest a URL and its related sources",
    responses={422: {"description": "Root URL could not be ingested"}},
)
async def trigger_ingest(
    request: IngestRequest,
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
):
    try:
        outcome = await pipeline.ingest_url(
            request.url,
            collection=request.collection,
            force=request.force,
            source_weight=request.source_weight,
        )
    except KnowledgeBaseError as exc:
        return JSONResponse(status_code=422, content={"detail": str(exc), "job_id": exc.job_id})
    return IngestResponse(
        job_id=outcome.job_id,
        source_id=outcome.source_id,
        deduplicated=outcome.deduplicated,
        report=outcome.report.to_dict(),
        summary=outcome.summary,
    )


__all__ = ["router"]
