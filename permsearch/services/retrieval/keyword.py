"""
Keyword Search Retriever
BM25 ranking over the tenant-scoped chunk store
"""

import math
import re
import time
from collections import Counter
from typing import List, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from permsearch.core.config import settings
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

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def tokenize(text: str) -> List[str]:
    """Lowercased word tokens"""
    return _TOKEN_RE.findall(text.lower())


class KeywordRetriever(BaseRetriever):
    """
    Keyword-based search using BM25

    Candidate chunks are narrowed in SQL with case-insensitive substring
    matches on the query terms; term frequencies are counted on exact
    tokens. Document length is measured in characters against the
    tenant's average.
    """

    # Upper bound on candidate chunks scored per query
    MAX_CANDIDATES = 2000

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker] = None,
        k1: Optional[float] = None,
        b: Optional[float] = None,
    ):
        """Initialize the keyword retriever"""
        super().__init__(name="keyword")
        self._session_maker = session_maker
        self.k1 = k1 if k1 is not None else settings.BM25_K1
        self.b = b if b is not None else settings.BM25_B

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
        start_time = time.time()
        terms = sorted(set(tokenize(query_text)))
        if not terms:
            return []

        try:
            async with self.session_maker() as session:
                hits = await self._search_bm25(session, tenant_id, terms, limit, filters)
        except Exception as e:
            logger.error(f"Keyword search failed for tenant {tenant_id}: {e}")
            raise RetrievalException(
                message="Keyword search failed",
                retriever="keyword",
                details={"error": str(e)},
            ) from e

        self._log_retrieval(tenant_id, query_text, len(hits), (time.time() - start_time) * 1000)
        return hits

    async def _search_bm25(
        self,
        session: AsyncSession,
        tenant_id: str,
        terms: List[str],
        limit: int,
        filters: SearchFilters,
    ) -> List[SearchHit]:
        tenant_clause = Chunk.tenant_id == tenant_id
        term_clauses = [Chunk.content.icontains(term, autoescape=True) for term in terms]

        stats = await session.execute(
            select(func.count(Chunk.id), func.avg(func.length(Chunk.content))).where(tenant_clause)
        )
        total_docs, avg_length = stats.one()
        if not total_docs:
            return []
        avg_length = float(avg_length or 1.0)

        doc_freq = {}
        for term, clause in zip(terms, term_clauses):
            result = await session.execute(
                select(func.count(Chunk.id)).where(tenant_clause, clause)
            )
            doc_freq[term] = result.scalar_one()

        result = await session.execute(
            select(Chunk)
            .where(*chunk_filter_clauses(tenant_id, filters), or_(*term_clauses))
            .order_by(Chunk.created_at.desc(), Chunk.chunk_id)
            .limit(self.MAX_CANDIDATES)
        )
        candidates = result.scalars().all()

        scored = []
        for chunk in candidates:
            score = self._score(chunk.content, terms, doc_freq, total_docs, avg_length)
            if score > 0:
                scored.append((score, chunk))

        scored.sort(key=lambda item: (-item[0], item[1].chunk_id))
        return [
            hit_from_chunk(chunk, keyword_rank=rank)
            for rank, (_, chunk) in enumerate(scored[:limit], start=1)
        ]

    def _score(
        self,
        content: str,
        terms: List[str],
        doc_freq: dict,
        total_docs: int,
        avg_length: float,
    ) -> float:
        counts = Counter(tokenize(content))
        length_norm = 1 - self.b + self.b * (len(content) / avg_length)
        score = 0.0
        for term in terms:
            tf = counts.get(term, 0)
            if not tf:
                continue
            df = doc_freq.get(term, 0)
            idf = math.log(1 + (total_docs - df + 0.5) / (df + 0.5))
            score += idf * (tf * (self.k1 + 1)) / (tf + self.k1 * length_norm)
        return score

    async def health_check(self) -> bool:
        try:
            async with self.session_maker() as session:
                await session.execute(select(1))
            return True
        except Exception as e:
            logger.error(f"Keyword retriever health check failed: {e}")
            return False
