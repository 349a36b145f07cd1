"""
Vector Search Retrievers
Cosine similarity over chunk embeddings, in-database or via Milvus
"""

import asyncio
import time
from typing import List, Optional, Sequence

import numpy as np
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from permsearch.core.exceptions import RetrievalException
from permsearch.core.logging import get_logger
from permsearch.db.models import Chunk
from permsearch.db.session import get_session_maker
from permsearch.services.retrieval.base import (
    BaseRetriever,
    chunk_filter_clauses,
    hit_from_chunk,
)
from permsearch.services.retrieval.models import SearchFilters, SearchHit

logger = get_logger(__name__)


def cosine_top_k(
    query: Sequence[float],
    matrix: np.ndarray,
    limit: int,
) -> List[int]:
    """Row indices of the `limit` rows most similar to `query`, best first"""
    if matrix.size == 0:
        return []
    q = np.asarray(query, dtype=np.float32)
    q_norm = np.linalg.norm(q)
    if q_norm == 0:
        return []
    row_norms = np.linalg.norm(matrix, axis=1)
    row_norms[row_norms == 0] = np.inf
    scores = (matrix @ q) / (row_norms * q_norm)
    # Stable sort keeps the chunk_id order of the input on ties
    order = np.argsort(-scores, kind="stable")
    return [int(i) for i in order[:limit]]


class DatabaseVectorRetriever(BaseRetriever):
    """
    Exact cosine search over embeddings stored with the chunks

    Suitable for small tenants and tests; large deployments use Milvus.
    """

    def __init__(self, session_maker: Optional[async_sessionmaker] = None):
        super().__init__(name="vector")
        self._session_maker = session_maker

    @property
    def session_maker(self) -> async_sessionmaker:
        if self._session_maker is None:
            self._session_maker = get_session_maker()
        return self._session_maker

    async def search(
        self,
        tenant_id: str,
        query_text: str,
        query_embedding: Optional[Sequence[float]],
        limit: int,
        filters: SearchFilters,
    ) -> List[SearchHit]:
        if query_embedding is None:
            return []
        start_time = time.time()

        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(Chunk)
                    .where(*chunk_filter_clauses(tenant_id, filters), Chunk.embedding.is_not(None))
                    .order_by(Chunk.chunk_id)
                )
                chunks = [
                    c for c in result.scalars().all()
                    if c.embedding and len(c.embedding) == len(query_embedding)
                ]

            matrix = np.asarray([c.embedding for c in chunks], dtype=np.float32)
            loop = asyncio.get_running_loop()
            order = await loop.run_in_executor(
                None, cosine_top_k, query_embedding, matrix, limit
            )
        except Exception as e:
            logger.error(f"Vector search failed for tenant {tenant_id}: {e}")
            raise RetrievalException(
                message="Vector search failed",
                retriever="vector",
                details={"error": str(e)},
            ) from e

        hits = [
            hit_from_chunk(chunks[index], vector_rank=rank)
            for rank, index in enumerate(order, start=1)
        ]
        self._log_retrieval(tenant_id, query_text, len(hits), (time.time() - start_time) * 1000)
        return hits


class MilvusVectorRetriever(BaseRetriever):
    """ANN search using the Milvus HNSW index"""

    def __init__(self):
        super().__init__(name="vector")

    async def initialize(self) -> None:
        from permsearch.db.vector import init_milvus

        await init_milvus()
        await super().initialize()

    async def shutdown(self) -> None:
        from permsearch.db.vector import close_milvus

        await close_milvus()
        await super().shutdown()

    async def search(
        self,
        tenant_id: str,
        query_text: str,
        query_embedding: Optional[Sequence[float]],
        limit: int,
        filters: SearchFilters,
    ) -> List[SearchHit]:
        from permsearch.db.vector import build_filter_expr, search_similar

        if query_embedding is None:
            return []
        start_time = time.time()

        expr = build_filter_expr(
            tenant_id,
            resource_types=filters.resource_types,
            created_from=int(filters.date_from.timestamp()) if filters.date_from else None,
            created_to=int(filters.date_to.timestamp()) if filters.date_to else None,
            resource_refs=filters.resource_refs,
        )
        rows = await search_similar(query_embedding, expr=expr, limit=limit)

        hits = [
            SearchHit(
                chunk_id=row["chunk_id"],
                resource_id=row["resource_id"],
                resource_type=row["resource_type"],
                content=row["content"],
                location_metadata=row["location_metadata"],
                vector_rank=rank,
            )
            for rank, row in enumerate(rows, start=1)
        ]
        self._log_retrieval(tenant_id, query_text, len(hits), (time.time() - start_time) * 1000)
        return hits

    async def health_check(self) -> bool:
        from permsearch.db.vector import health_check as milvus_health_check

        return await milvus_health_check()
