"""
Search Pydantic Models
Request/response schemas for search and answer endpoints
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from permsearch.services.context.models import Citation
from permsearch.services.retrieval.models import SearchFilters


class SearchRequest(BaseModel):
    """Search request schema"""
    query: str = Field(..., min_length=1, max_length=1000)
    top_k: int = Field(10, ge=1, le=100)
    filters: SearchFilters = Field(default_factory=SearchFilters)


class SearchResult(BaseModel):
    """One permitted chunk"""
    chunk_id: str
    resource_id: str
    resource_type: str
    content: str
    score: float
    keyword_rank: Optional[int] = None
    vector_rank: Optional[int] = None
    location_metadata: Dict[str, Any] = Field(default_factory=dict)


class SearchResponse(BaseModel):
    """Search response schema"""
    query: str
    total: int
    results: List[SearchResult]
    degraded: bool
    execution_time_ms: float


class AnswerRequest(BaseModel):
    """Answer request schema"""
    query: str = Field(..., min_length=1, max_length=1000)
    top_k: int = Field(10, ge=1, le=50)
    filters: SearchFilters = Field(default_factory=SearchFilters)
    max_context_tokens: Optional[int] = Field(None, ge=1, le=32000)
    verify_citations: bool = True


class AnswerResponse(BaseModel):
    """Answer response schema"""
    query_id: str
    query: str
    answer: str
    citations: List[Citation]
    unknown_markers: List[int]
    degraded: bool
    processing_time_ms: float
    stage_timings_ms: Dict[str, float]
    llm_model: Optional[str] = None
