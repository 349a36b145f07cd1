"""
ACL-Filtered Retriever
Fused search restricted to the resources the querying user may read
"""

import asyncio
import time
from typing import List, Optional, Set

from permsearch.core.config import settings
from permsearch.core.exceptions import ValidationException
from permsearch.core.logging import get_logger
from permsearch.monitoring.metrics import (
    retrieval_requeries_total,
    search_branch_failures_total,
    search_duration_seconds,
)
from permsearch.services.acl import ACLService, ResourceRef, get_acl_service
from permsearch.services.embedding import BaseEmbeddingClient, get_embedding_service
from permsearch.services.retrieval.base import BaseRetriever
from permsearch.services.retrieval.hybrid import HybridSearchFuser
from permsearch.services.retrieval.keyword import KeywordRetriever
from permsearch.services.retrieval.models import (
    FusedSearchResult,
    RetrievalOptions,
    RetrievalResult,
    SearchFilters,
    SearchHit,
)

logger = get_logger(__name__)


class ACLFilteredRetriever:
    """
    Permission-aware retrieval

    Post-filter (default): search the tenant corpus with an over-fetch
    window, keep the hits the user may read in fused order, and re-query
    once with a larger window when the permitted list is short and the
    fused list was cut off.

    Pre-filter: pass the user's allowed resources into the search filters.
    Hits are still checked against the allowed set afterwards.

    The allowed set is resolved before searching; if it cannot be
    determined the result is empty.
    """

    def __init__(
        self,
        acl_service: Optional[ACLService] = None,
        fuser: Optional[HybridSearchFuser] = None,
        embedding_service: Optional[BaseEmbeddingClient] = None,
        strategy: Optional[str] = None,
        overfetch_factor: Optional[int] = None,
        retry_window_factor: Optional[int] = None,
        embedding_timeout_ms: Optional[int] = None,
    ):
        self.acl_service = acl_service or get_acl_service()
        self.fuser = fuser or build_fuser()
        self._embedding_service = embedding_service
        self.strategy = strategy or settings.ACL_FILTER_STRATEGY
        self.overfetch_factor = overfetch_factor or settings.ACL_OVERFETCH_FACTOR
        self.retry_window_factor = retry_window_factor or settings.ACL_RETRY_WINDOW_FACTOR
        self.embedding_timeout_ms = embedding_timeout_ms or settings.EMBEDDING_TIMEOUT_MS

    @property
    def embedding_service(self) -> BaseEmbeddingClient:
        if self._embedding_service is None:
            self._embedding_service = get_embedding_service()
        return self._embedding_service

    async def retrieve(
        self,
        tenant_id: str,
        user_id: str,
        query_text: str,
        options: Optional[RetrievalOptions] = None,
    ) -> RetrievalResult:
        """
        Retrieve permitted chunks for a query

        Args:
            tenant_id: Tenant scope
            user_id: Querying user
            query_text: Query text
            options: top_k, filters and strategy override

        Returns:
            RetrievalResult with at most top_k permitted hits in fused order

        Raises:
            ValidationException: If the query is empty
            RetrievalException: If every search branch failed
        """
        start_time = time.time()
        options = options or RetrievalOptions(top_k=settings.SEARCH_TOP_K)
        strategy = options.strategy or self.strategy
        top_k = options.top_k

        if not query_text or not query_text.strip():
            raise ValidationException("Query cannot be empty")

        allowed = await self.acl_service.allowed_refs_or_none(tenant_id, user_id)
        if not allowed:
            logger.debug(f"No readable resources for user in tenant {tenant_id}")
            return self._result(query_text, [], start_time, strategy=strategy)

        query_embedding = await self._embed(query_text)
        degraded = query_embedding is None

        filters = options.filters
        if strategy == "pre":
            filters = self._restrict_filters(filters, allowed)
            window = top_k
        else:
            window = top_k * self.overfetch_factor

        fused = await self.fuser.search(tenant_id, query_text, query_embedding, window, filters)
        permitted = self._permitted(fused, allowed)
        requeried = False

        if len(permitted) < top_k and fused.truncated:
            window *= self.retry_window_factor
            retrieval_requeries_total.inc()
            logger.debug(
                f"Permitted hits under-filled ({len(permitted)}/{top_k}); "
                f"re-querying with window={window}"
            )
            fused = await self.fuser.search(
                tenant_id, query_text, query_embedding, window, filters
            )
            permitted = self._permitted(fused, allowed)
            requeried = True

        degraded = degraded or bool(fused.failed_branches)
        search_duration_seconds.labels(stage="retrieve").observe(time.time() - start_time)
        return self._result(
            query_text,
            permitted[:top_k],
            start_time,
            strategy=strategy,
            degraded=degraded,
            requeried=requeried,
            failed_branches=fused.failed_branches,
            fused_count=len(fused.hits),
        )

    async def _embed(self, query_text: str) -> Optional[List[float]]:
        """Embed the query; None (keyword-only) when the provider fails or is slow"""
        try:
            return await asyncio.wait_for(
                self.embedding_service.embed_query(query_text),
                timeout=self.embedding_timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Query embedding timed out after {self.embedding_timeout_ms}ms")
            search_branch_failures_total.labels(branch="embedding", reason="timeout").inc()
        except Exception as e:
            logger.warning(f"Query embedding failed; keyword-only search: {e}")
            search_branch_failures_total.labels(branch="embedding", reason="error").inc()
        return None

    @staticmethod
    def _restrict_filters(filters: SearchFilters, allowed: Set[ResourceRef]) -> SearchFilters:
        refs = allowed
        if filters.resource_refs is not None:
            refs = allowed & set(filters.resource_refs)
        return filters.model_copy(update={"resource_refs": sorted(refs)})

    @staticmethod
    def _permitted(fused: FusedSearchResult, allowed: Set[ResourceRef]) -> List[SearchHit]:
        return [hit for hit in fused.hits if hit.ref in allowed]

    @staticmethod
    def _result(
        query_text: str,
        hits: List[SearchHit],
        start_time: float,
        degraded: bool = False,
        requeried: bool = False,
        **metadata,
    ) -> RetrievalResult:
        return RetrievalResult(
            hits=hits,
            total_results=len(hits),
            query=query_text,
            execution_time_ms=(time.time() - start_time) * 1000,
            degraded=degraded,
            requeried=requeried,
            metadata=metadata,
        )


def build_vector_retriever() -> BaseRetriever:
    """Vector branch selected by VECTOR_BACKEND"""
    if settings.VECTOR_BACKEND == "milvus":
        from permsearch.services.retrieval.vector import MilvusVectorRetriever

        return MilvusVectorRetriever()

    from permsearch.services.retrieval.vector import DatabaseVectorRetriever

    return DatabaseVectorRetriever()


def build_fuser() -> HybridSearchFuser:
    return HybridSearchFuser(
        keyword_retriever=KeywordRetriever(),
        vector_retriever=build_vector_retriever(),
    )


# Global retriever instance
_retriever: Optional[ACLFilteredRetriever] = None


def get_retriever() -> ACLFilteredRetriever:
    """Get the global ACL-filtered retriever"""
    global _retriever
    if _retriever is None:
        _retriever = ACLFilteredRetriever()
    return _retriever


async def retrieve(
    tenant_id: str,
    user_id: str,
    query_text: str,
    options: Optional[RetrievalOptions] = None,
) -> RetrievalResult:
    """Convenience function for retrieval"""
    return await get_retriever().retrieve(tenant_id, user_id, query_text, options)
