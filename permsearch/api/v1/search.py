"""
Search API Routes
Permission-filtered hybrid search
"""

from fastapi import APIRouter, Depends

from permsearch.api.dependencies import get_current_principal
from permsearch.core.logging import get_logger
from permsearch.core.security import TokenPrincipal
from permsearch.models.search import SearchRequest, SearchResponse, SearchResult
from permsearch.monitoring.metrics import track_request
from permsearch.services.retrieval import ACLFilteredRetriever, RetrievalOptions, get_retriever

logger = get_logger(__name__)
router = APIRouter()


@router.post("/search", response_model=SearchResponse)
@track_request("POST", "/search")
async def search(
    request: SearchRequest,
    principal: TokenPrincipal = Depends(get_current_principal),
    retriever: ACLFilteredRetriever = Depends(get_retriever),
):
    """
    Search the chunks the caller may read

    - **query**: Query text
    - **top_k**: Number of results (1-100)
    - **filters**: Resource types, creation date range, specific resources
    """
    result = await retriever.retrieve(
        principal.tenant_id,
        principal.user_id,
        request.query,
        RetrievalOptions(top_k=request.top_k, filters=request.filters),
    )

    return SearchResponse(
        query=request.query,
        total=result.total_results,
        results=[
            SearchResult(
                chunk_id=hit.chunk_id,
                resource_id=hit.resource_id,
                resource_type=hit.resource_type,
                content=hit.content,
                score=hit.fused_score,
                keyword_rank=hit.keyword_rank,
                vector_rank=hit.vector_rank,
                location_metadata=hit.location_metadata,
            )
            for hit in result.hits
        ],
        degraded=result.degraded,
        execution_time_ms=round(result.execution_time_ms, 2),
    )
