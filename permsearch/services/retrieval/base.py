"""
Base Retrieval Interface
Abstract base class for the search branches fused by hybrid search
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import and_, false, or_

from permsearch.core.logging import get_logger
from permsearch.db.models import Chunk
from permsearch.services.retrieval.models import SearchFilters, SearchHit

logger = get_logger(__name__)


class BaseRetriever(ABC):
    """
    Abstract base class for search branches

    Every branch is tenant-scoped, applies the same filters before
    ranking and returns hits in its own rank order.
    """

    def __init__(self, name: str):
        """
        Initialize the retriever

        Args:
            name: Branch name ("keyword" or "vector")
        """
        self.name = name
        self._is_initialized = False
        logger.debug(f"{self.name} retriever created")

    @abstractmethod
    async def search(
        self,
        tenant_id: str,
        query_text: str,
        query_embedding: Optional[Sequence[float]],
        limit: int,
        filters: SearchFilters,
    ) -> List[SearchHit]:
        """
        Search one tenant's chunks

        Args:
            tenant_id: Tenant scope
            query_text: Query text
            query_embedding: Query vector (vector branches only)
            limit: Maximum number of hits
            filters: Filters applied before ranking

        Returns:
            Hits in rank order, rank field set for this branch

        Raises:
            RetrievalException: If the search fails
        """

    async def health_check(self) -> bool:
        """Check if the retriever is healthy"""
        return self._is_initialized

    async def initialize(self) -> None:
        """Connect to backing stores; override when needed"""
        self._is_initialized = True
        logger.info(f"{self.name} retriever initialized")

    async def shutdown(self) -> None:
        """Release backing resources; override when needed"""
        self._is_initialized = False
        logger.info(f"{self.name} retriever shutdown")

    def _log_retrieval(
        self,
        tenant_id: str,
        query: str,
        num_results: int,
        execution_time_ms: float,
    ) -> None:
        logger.debug(
            f"{self.name} search: tenant={tenant_id} query='{query[:50]}', "
            f"results={num_results}, time={execution_time_ms:.2f}ms"
        )


def chunk_filter_clauses(tenant_id: str, filters: SearchFilters) -> List[Any]:
    """SQL WHERE clauses for one tenant and a filter set"""
    clauses: List[Any] = [Chunk.tenant_id == tenant_id]

    if filters.resource_types:
        clauses.append(Chunk.resource_type.in_(filters.resource_types))
    if filters.date_from is not None:
        clauses.append(Chunk.created_at >= filters.date_from)
    if filters.date_to is not None:
        clauses.append(Chunk.created_at <= filters.date_to)

    if filters.resource_refs is not None:
        by_type: Dict[str, List[str]] = defaultdict(list)
        for ref in filters.resource_refs:
            by_type[ref.resource_type].append(ref.resource_id)
        if not by_type:
            # An explicit empty allow-list matches nothing
            clauses.append(false())
        else:
            clauses.append(
                or_(
                    *[
                        and_(Chunk.resource_type == rtype, Chunk.resource_id.in_(ids))
                        for rtype, ids in sorted(by_type.items())
                    ]
                )
            )
    return clauses


def hit_from_chunk(chunk: Chunk, **ranks: Any) -> SearchHit:
    return SearchHit(
        chunk_id=chunk.chunk_id,
        resource_id=chunk.resource_id,
        resource_type=chunk.resource_type,
        content=chunk.content,
        location_metadata=dict(chunk.location_metadata or {}),
        **ranks,
    )
