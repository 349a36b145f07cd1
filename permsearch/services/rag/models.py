"""
Answer Models
Pydantic models for the cited answer pipeline
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from permsearch.services.context.models import Citation
from permsearch.services.retrieval.models import SearchFilters


class AnswerOptions(BaseModel):
    """Options for answer generation"""

    top_k: int = Field(default=10, ge=1, le=100, description="Permitted chunks to retrieve")
    filters: SearchFilters = Field(default_factory=SearchFilters)
    max_context_tokens: Optional[int] = Field(
        default=None, ge=1, description="Context budget (defaults to CONTEXT_MAX_TOKENS)"
    )
    verify_citations: bool = Field(default=True, description="Score citations against sources")
    include_context: bool = Field(default=False, description="Return the prompt context chunks")

    class Config:
        json_schema_extra = {
            "example": {
                "top_k": 10,
                "filters": {"resource_types": ["document"]},
                "max_context_tokens": 3000,
                "verify_citations": True,
                "include_context": False,
            }
        }


class StageTiming(BaseModel):
    """Timing for a single pipeline stage"""

    stage_name: str
    duration_ms: float
    success: bool = True
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AnswerResult(BaseModel):
    """Generated answer with verified citations"""

    query: str
    answer: str
    citations: List[Citation] = Field(default_factory=list)
    unknown_markers: List[int] = Field(
        default_factory=list, description="Cited indices with no matching context chunk"
    )
    context: List[Dict[str, Any]] = Field(default_factory=list)
    context_tokens: int = 0
    degraded: bool = Field(default=False, description="Retrieval ran without every branch")
    query_id: str
    processing_time_ms: float
    stage_timings: List[StageTiming] = Field(default_factory=list)
    llm_model: Optional[str] = None
