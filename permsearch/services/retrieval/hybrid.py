"""
Hybrid Search Fuser
Runs keyword and vector search concurrently and merges them with
Reciprocal Rank Fusion (RRF)
"""

import asyncio
import time
from typing import Dict, List, Mapping, Optional, Sequence

from permsearch.core.config import settings
from permsearch.core.exceptions import RetrievalException
from permsearch.core.logging import get_logger
from permsearch.monitoring.metrics import search_branch_failures_total, search_duration_seconds
from permsearch.services.retrieval.base import BaseRetriever
from permsearch.services.retrieval.models import FusedSearchResult, SearchFilters, SearchHit

logger = get_logger(__name__)

RANK_FIELDS = {"keyword": "keyword_rank", "vector": "vector_rank"}


def fuse_rankings(
    rankings: Mapping[str, Sequence[SearchHit]],
    k: int = 60,
) -> List[SearchHit]:
    """
    Merge ranked lists with Reciprocal Rank Fusion

    RRF Formula:
        score(d) = sum(1 / (k + rank_i(d))) over every list containing d

    Ranks are 1-based positions in each list; a chunk appearing twice in
    one list keeps its first position. Ties are broken by best rank in
    any list, then chunk ID, so the result does not depend on the order
    of the input lists.

    Args:
        rankings: Branch name ("keyword" or "vector") -> hits in rank order
        k: RRF constant

    Returns:
        Deduplicated hits sorted by fused score
    """
    fused: Dict[str, SearchHit] = {}
    best_rank: Dict[str, int] = {}

    for branch in sorted(rankings):
        rank_field = RANK_FIELDS[branch]
        seen = set()
        for rank, hit in enumerate(rankings[branch], start=1):
            if hit.chunk_id in seen:
                continue
            seen.add(hit.chunk_id)

            entry = fused.get(hit.chunk_id)
            if entry is None:
                entry = hit.model_copy(
                    update={"keyword_rank": None, "vector_rank": None, "fused_score": 0.0}
                )
                fused[hit.chunk_id] = entry
            setattr(entry, rank_field, rank)
            entry.fused_score += 1.0 / (k + rank)
            best_rank[hit.chunk_id] = min(best_rank.get(hit.chunk_id, rank), rank)

    return sorted(
        fused.values(),
        key=lambda h: (-h.fused_score, best_rank[h.chunk_id], h.chunk_id),
    )


class HybridSearchFuser:
    """
    Hybrid search combining keyword and vector retrieval

    Both branches run as concurrent tasks under one search timeout.
    Branches still running at the deadline are cancelled and the
    completed ones are fused; if no branch produced results the search
    fails with a generic error.
    """

    def __init__(
        self,
        keyword_retriever: BaseRetriever,
        vector_retriever: BaseRetriever,
        rrf_k: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ):
        self.keyword_retriever = keyword_retriever
        self.vector_retriever = vector_retriever
        self.rrf_k = rrf_k or settings.RRF_K
        self.timeout_ms = timeout_ms or settings.SEARCH_TIMEOUT_MS

    async def initialize(self) -> None:
        await self.keyword_retriever.initialize()
        await self.vector_retriever.initialize()

    async def shutdown(self) -> None:
        await self.keyword_retriever.shutdown()
        await self.vector_retriever.shutdown()

    async def search(
        self,
        tenant_id: str,
        query_text: str,
        query_embedding: Optional[Sequence[float]],
        top_k: int,
        filters: Optional[SearchFilters] = None,
    ) -> FusedSearchResult:
        """
        Search both branches and fuse the results

        Args:
            tenant_id: Tenant scope
            query_text: Query text for the keyword branch
            query_embedding: Query vector; None runs keyword-only
            top_k: Per-branch limit and size of the fused window
            filters: Filters applied identically to both branches

        Returns:
            FusedSearchResult with at most top_k hits

        Raises:
            RetrievalException: If no branch completed
        """
        start_time = time.time()
        filters = filters or SearchFilters()

        retrievers = {"keyword": self.keyword_retriever}
        if query_embedding is not None:
            retrievers["vector"] = self.vector_retriever

        tasks: Dict[str, asyncio.Task] = {
            name: asyncio.create_task(
                retriever.search(tenant_id, query_text, query_embedding, top_k, filters),
                name=f"search-{name}",
            )
            for name, retriever in retrievers.items()
        }

        try:
            done, pending = await asyncio.wait(
                tasks.values(), timeout=self.timeout_ms / 1000.0
            )
        finally:
            # Also runs when the caller is cancelled mid-wait
            for task in tasks.values():
                if not task.done():
                    task.cancel()

        rankings: Dict[str, List[SearchHit]] = {}
        failed: List[str] = [] if query_embedding is not None else ["vector"]
        for name, task in tasks.items():
            if task in pending:
                logger.warning(f"{name} search timed out after {self.timeout_ms}ms")
                search_branch_failures_total.labels(branch=name, reason="timeout").inc()
                failed.append(name)
                continue
            error = task.exception()
            if error is not None:
                logger.warning(f"{name} search failed: {error}")
                search_branch_failures_total.labels(branch=name, reason="error").inc()
                failed.append(name)
                continue
            rankings[name] = task.result()

        if not rankings:
            logger.error(f"All search branches failed for tenant {tenant_id}: {sorted(failed)}")
            raise RetrievalException(
                message="Search temporarily unavailable",
                retriever="hybrid",
                details={"failed_branches": sorted(failed)},
            )

        fused = fuse_rankings(rankings, k=self.rrf_k)
        truncated = len(fused) > top_k or any(len(hits) >= top_k for hits in rankings.values())

        search_duration_seconds.labels(stage="fusion").observe(time.time() - start_time)
        logger.debug(
            f"RRF fused {len(rankings.get('keyword', []))} keyword + "
            f"{len(rankings.get('vector', []))} vector -> {len(fused)} unique chunks"
        )

        return FusedSearchResult(
            hits=fused[:top_k],
            keyword_count=len(rankings.get("keyword", [])),
            vector_count=len(rankings.get("vector", [])),
            failed_branches=sorted(failed),
            truncated=truncated,
        )

    async def health_check(self) -> bool:
        """At least one branch must be healthy"""
        keyword_healthy = await self.keyword_retriever.health_check()
        vector_healthy = await self.vector_retriever.health_check()
        return keyword_healthy or vector_healthy
