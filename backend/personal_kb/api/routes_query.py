"""Query API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from personal_kb.api.dependencies import get_query_service
from personal_kb.models.dto import AskRequest, AskResponse, RankedChunkResponse, SearchRequest, SearchResponse
from personal_kb.retrieval.search import QueryService

router = APIRouter()


@router.post("/search", response_model=SearchResponse, summary="Rank stored chunks against a query")
async def run_search(
    request: SearchRequest,
    service: QueryService = Depends(get_query_service),
) -> SearchResponse:
    result = await service.search(request.query, limit=request.limit, filters=request.filters)
    return SearchResponse(
        chunks=[RankedChunkResponse(**chunk.to_dict()) for chunk in result.chunks],
        candidate_chunks=result.candidate_chunks,
        candidate_sources=result.candidate_sources,
    )


@router.post("/ask", response_model=AskResponse, summary="Answer a question with citations")
async def ask(request: AskRequest, service: QueryService = Depends(get_query_service)) -> AskResponse:
    answer = await service.answer(request.question, filters=request.filters)
    return AskResponse(answer=answer)


__all__ = ["router"]
