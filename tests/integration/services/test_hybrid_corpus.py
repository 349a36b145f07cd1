#!/usr/bin/env python3
"""
Integration Tests for Hybrid Retrieval
Tests for permsearch/services/retrieval over a seeded corpus
"""

import pytest

from permsearch.core.exceptions import EmbeddingException
from permsearch.services.retrieval import RetrievalOptions


def by_resource(result):
    return {hit.resource_id: hit for hit in result.hits}


@pytest.mark.integration
class TestHybridCorpus:
    """Test keyword and vector evidence are both returned"""

    @pytest.mark.asyncio
    async def test_keyword_only_and_vector_only_matches(self, retriever, corpus):
        result = await retriever.retrieve("t1", "U1", "zebra budget", RetrievalOptions(top_k=5))

        hits = by_resource(result)
        assert set(hits) == {"D1", "D2"}
        assert hits["D1"].keyword_rank == 1
        assert hits["D1"].vector_rank is None
        assert hits["D2"].vector_rank == 1
        assert hits["D2"].keyword_rank is None
        assert result.degraded is False

    @pytest.mark.asyncio
    async def test_pre_filter_returns_same_permitted_hits(self, retriever, corpus):
        result = await retriever.retrieve(
            "t1", "U1", "zebra budget", RetrievalOptions(top_k=5, strategy="pre")
        )
        assert set(by_resource(result)) == {"D1", "D2"}

    @pytest.mark.asyncio
    async def test_user_without_grants_sees_nothing(self, retriever, corpus):
        result = await retriever.retrieve("t1", "U2", "zebra budget", RetrievalOptions(top_k=5))
        assert result.hits == []

    @pytest.mark.asyncio
    async def test_embedding_failure_degrades_to_keyword(self, retriever, corpus, monkeypatch):
        async def fail(text):
            raise EmbeddingException("embedding provider unreachable")

        monkeypatch.setattr(retriever.embedding_service, "embed_query", fail)

        result = await retriever.retrieve("t1", "U1", "zebra budget", RetrievalOptions(top_k=5))

        assert [hit.resource_id for hit in result.hits] == ["D1"]
        assert result.degraded is True

    @pytest.mark.asyncio
    async def test_other_tenant_chunks_excluded(self, retriever, corpus):
        await corpus.chunk("x1", "D1", "zebra zebra zebra", tenant_id="t2")

        result = await retriever.retrieve("t1", "U1", "zebra", RetrievalOptions(top_k=5))

        assert "x1" not in {hit.chunk_id for hit in result.hits}
