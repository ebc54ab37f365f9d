"""Query API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from docsearch.api.dependencies import get_query_service
from docsearch.models.dto import QueryRequest, QueryResponse
from docsearch.retrieval.search import QueryService

router = APIRouter()


@router.post("/query", response_model=QueryResponse, summary="Rank stored chunks against a query")
async def run_query(
    request: QueryRequest,
    service: QueryService = Depends(get_query_service),
) -> QueryResponse:
    outcome = await service.search(request.query, request.k)
    return QueryResponse(**outcome.to_dict())


@router.post("/query/answer", response_model=QueryResponse, summary="Answer a question from ranked chunks")
async def answer_query(
    request: QueryRequest,
    service: QueryService = Depends(get_query_service),
) -> QueryResponse:
    outcome = await service.answer(request.query, request.k)
    return QueryResponse(**outcome.to_dict())
