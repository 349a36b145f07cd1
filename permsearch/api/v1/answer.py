"""
Answer API Routes
Cited answers over permitted sources
"""

from fastapi import APIRouter, Depends

from permsearch.api.dependencies import get_current_principal
from permsearch.core.security import TokenPrincipal
from permsearch.models.search import AnswerRequest, AnswerResponse
from permsearch.monitoring.metrics import track_request
from permsearch.services.rag import AnswerOptions, AnswerService, get_answer_service

router = APIRouter()


@router.post("/answer", response_model=AnswerResponse)
@track_request("POST", "/answer")
async def answer(
    request: AnswerRequest,
    principal: TokenPrincipal = Depends(get_current_principal),
    service: AnswerService = Depends(get_answer_service),
):
    """
    Answer a question from the caller's permitted sources

    Citations refer to the numbered context chunks; markers the model
    invented are listed in **unknown_markers**.
    """
    result = await service.answer(
        principal.tenant_id,
        principal.user_id,
        request.query,
        AnswerOptions(
            top_k=request.top_k,
            filters=request.filters,
            max_context_tokens=request.max_context_tokens,
            verify_citations=request.verify_citations,
        ),
    )

    return AnswerResponse(
        query_id=result.query_id,
        query=result.query,
        answer=result.answer,
        citations=result.citations,
        unknown_markers=result.unknown_markers,
        degraded=result.degraded,
        processing_time_ms=result.processing_time_ms,
        stage_timings_ms={t.stage_name: round(t.duration_ms, 2) for t in result.stage_timings},
        llm_model=result.llm_model,
    )
