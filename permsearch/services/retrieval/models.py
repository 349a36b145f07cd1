"""
Retrieval Models
Pydantic models for search hits, filters and retrieval results
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from permsearch.services.acl.models import ResourceRef, ResourceType


class SearchHit(BaseModel):
    """A chunk returned by search, with its rank in each branch"""

    chunk_id: str = Field(description="Unique chunk identifier")
    resource_id: str = Field(description="Document or email ID")
    resource_type: str = Field(description="'document' or 'email'")
    content: str = Field(description="Chunk text content")
    keyword_rank: Optional[int] = Field(default=None, ge=1, description="1-based keyword rank")
    vector_rank: Optional[int] = Field(default=None, ge=1, description="1-based vector rank")
    fused_score: float = Field(default=0.0, ge=0.0, description="Reciprocal rank fusion score")
    location_metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Page, offsets, message part, ..."
    )

    @property
    def ref(self) -> ResourceRef:
        return ResourceRef(self.resource_type, self.resource_id)

    model_config = {
        "json_schema_extra": {
            "example": {
                "chunk_id": "chunk_001",
                "resource_id": "doc_123",
                "resource_type": "document",
                "content": "Quarterly revenue grew 12%...",
                "keyword_rank": 2,
                "vector_rank": 1,
                "fused_score": 0.0325,
                "location_metadata": {"page": 3},
            }
        }
    }


class SearchFilters(BaseModel):
    """Filters applied identically to every search branch before ranking"""

    resource_types: Optional[List[ResourceType]] = Field(
        default=None, description="Restrict to these resource types"
    )
    date_from: Optional[datetime] = Field(default=None, description="Chunks created at or after")
    date_to: Optional[datetime] = Field(default=None, description="Chunks created at or before")
    resource_refs: Optional[List[ResourceRef]] = Field(
        default=None, description="Restrict to these resources"
    )

    model_config = {"use_enum_values": True}


class RetrievalOptions(BaseModel):
    """Options for a permission-filtered retrieval"""

    top_k: int = Field(default=10, ge=1, le=100)
    filters: SearchFilters = Field(default_factory=SearchFilters)
    strategy: Optional[Literal["post", "pre"]] = Field(
        default=None, description="ACL filter strategy (defaults to configuration)"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "top_k": 10,
                "filters": {"resource_types": ["document"]},
            }
        }
    }


class FusedSearchResult(BaseModel):
    """Output of one hybrid search call"""

    hits: List[SearchHit] = Field(default_factory=list)
    keyword_count: int = 0
    vector_count: int = 0
    failed_branches: List[str] = Field(default_factory=list)
    truncated: bool = Field(
        default=False, description="More results exist beyond the requested window"
    )


class RetrievalResult(BaseModel):
    """Permitted, ranked hits for one query"""

    hits: List[SearchHit] = Field(description="Permitted hits in fused order")
    total_results: int = Field(description="Number of hits returned")
    query: str = Field(description="Original query text")
    execution_time_ms: float = Field(description="Execution time in milliseconds")
    degraded: bool = Field(default=False, description="A search branch was unavailable")
    requeried: bool = Field(default=False, description="Re-queried with a larger window")
    metadata: Dict[str, Any] = Field(default_factory=dict)
