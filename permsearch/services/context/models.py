"""
Context Models
Accepted context chunks and citations tied back to them
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ContextChunk(BaseModel):
    """A chunk accepted into the generation context"""

    chunk_id: str
    resource_id: str
    resource_type: str = Field(default="document")
    content: str
    citation_index: int = Field(ge=1, description="1-based marker used in the prompt")
    token_count: int = Field(ge=0)
    location_metadata: Dict[str, Any] = Field(default_factory=dict)


class ContextBuildResult(BaseModel):
    """Context assembled under a token budget"""

    chunks: List[ContextChunk] = Field(default_factory=list)
    total_tokens: int = Field(default=0, ge=0)
    max_token_budget: int = Field(ge=0)
    skipped_chunk_ids: List[str] = Field(
        default_factory=list, description="Hits that did not fit the remaining budget"
    )

    def by_index(self) -> Dict[int, ContextChunk]:
        return {chunk.citation_index: chunk for chunk in self.chunks}


class Citation(BaseModel):
    """A citation marker in generated text resolved to its source chunk"""

    index: int = Field(ge=1)
    resource_id: str
    resource_type: str = Field(default="document")
    chunk_id: str
    snippet: str = Field(description="Leading excerpt of the cited chunk")
    location_metadata: Dict[str, Any] = Field(default_factory=dict)
    support_score: Optional[float] = Field(
        default=None, ge=0.0, le=1.0, description="Lexical overlap with the citing sentence"
    )
    weak_support: bool = Field(default=False)


class CitationReport(BaseModel):
    """All citations found in one answer"""

    citations: List[Citation] = Field(default_factory=list)
    unknown_markers: List[int] = Field(default_factory=list)

    @property
    def weakly_supported(self) -> List[Citation]:
        return [c for c in self.citations if c.weak_support]
