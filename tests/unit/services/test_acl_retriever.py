#!/usr/bin/env python3
"""
Unit Tests for ACL-Filtered Retrieval
Tests for permsearch/services/retrieval/service.py
"""

import pytest

from permsearch.core.exceptions import EmbeddingException, RetrievalException, ValidationException
from permsearch.services.acl import ResourceRef
from permsearch.services.embedding import BaseEmbeddingClient
from permsearch.services.retrieval import (
    ACLFilteredRetriever,
    HybridSearchFuser,
    RetrievalOptions,
    SearchFilters,
)
from tests.helpers import StaticRetriever, make_hit


class FixedACL:
    """ACL service stand-in returning a fixed allowed set"""

    def __init__(self, allowed):
        self.allowed = allowed
        self.calls = 0

    async def allowed_refs_or_none(self, tenant_id, user_id):
        self.calls += 1
        return self.allowed


class FixedEmbedder(BaseEmbeddingClient):
    def __init__(self, error=None):
        super().__init__(model="fixed")
        self.error = error

    async def _embed(self, text):
        if self.error:
            raise self.error
        return [0.5, 0.5]


def doc(resource_id):
    return ResourceRef("document", resource_id)


def build(allowed, keyword_hits=(), vector_hits=(), strategy="post", embedder=None, **branch_kwargs):
    keyword = StaticRetriever("keyword", keyword_hits, **branch_kwargs)
    vector = StaticRetriever("vector", vector_hits)
    retriever = ACLFilteredRetriever(
        acl_service=FixedACL(allowed),
        fuser=HybridSearchFuser(keyword, vector, timeout_ms=1000),
        embedding_service=embedder or FixedEmbedder(),
        strategy=strategy,
        overfetch_factor=3,
        retry_window_factor=3,
    )
    return retriever, keyword, vector


class TestPostFilter:
    """Test post-filtering of fused results"""

    @pytest.mark.asyncio
    async def test_only_permitted_hits_in_fused_order(self):
        """Test forbidden chunks are removed without reordering the rest"""
        hits = [make_hit("c1", "D1"), make_hit("c2", "D2"), make_hit("c3", "D3")]
        retriever, _, _ = build({doc("D1"), doc("D3")}, keyword_hits=hits)

        result = await retriever.retrieve("t1", "U1", "query", RetrievalOptions(top_k=5))

        assert [h.chunk_id for h in result.hits] == ["c1", "c3"]
        assert result.total_results == 2
        assert result.degraded is False

    @pytest.mark.asyncio
    async def test_overfetch_window(self):
        retriever, keyword, _ = build({doc("D1")}, keyword_hits=[make_hit("c1", "D1")])

        await retriever.retrieve("t1", "U1", "query", RetrievalOptions(top_k=4))

        assert keyword.calls[0]["limit"] == 12

    @pytest.mark.asyncio
    async def test_same_type_required(self):
        """Test an email and a document sharing an ID are distinct resources"""
        hits = [make_hit("c1", "X", resource_type="email"), make_hit("c2", "X")]
        retriever, _, _ = build({doc("X")}, keyword_hits=hits)

        result = await retriever.retrieve("t1", "U1", "query")

        assert [h.chunk_id for h in result.hits] == ["c2"]

    @pytest.mark.asyncio
    async def test_requery_when_underfilled(self):
        """Test one re-query with a larger window when permitted hits run short"""
        hits = [make_hit(f"c{i:02d}", f"D{i:02d}") for i in range(30)]
        allowed = {doc("D10"), doc("D11")}
        retriever, keyword, _ = build(allowed, keyword_hits=hits)

        result = await retriever.retrieve("t1", "U1", "query", RetrievalOptions(top_k=2))

        assert [h.chunk_id for h in result.hits] == ["c10", "c11"]
        assert result.requeried is True
        assert [c["limit"] for c in keyword.calls] == [6, 18]

    @pytest.mark.asyncio
    async def test_no_requery_when_not_truncated(self):
        hits = [make_hit("c1", "D1"), make_hit("c2", "D2")]
        retriever, keyword, _ = build({doc("D1")}, keyword_hits=hits)

        result = await retriever.retrieve("t1", "U1", "query", RetrievalOptions(top_k=2))

        assert result.requeried is False
        assert len(keyword.calls) == 1


class TestAllowedSet:
    """Test the allowed set gate"""

    @pytest.mark.asyncio
    async def test_nothing_permitted_skips_search(self):
        retriever, keyword, _ = build(set(), keyword_hits=[make_hit("c1", "D1")])

        result = await retriever.retrieve("t1", "U1", "query")

        assert result.hits == []
        assert keyword.calls == []

    @pytest.mark.asyncio
    async def test_undeterminable_allowed_set_denies(self):
        """Test an ACL failure returns nothing"""
        retriever, keyword, _ = build(None, keyword_hits=[make_hit("c1", "D1")])

        result = await retriever.retrieve("t1", "U1", "query")

        assert result.hits == []
        assert keyword.calls == []

    @pytest.mark.asyncio
    async def test_empty_query_rejected(self):
        retriever, _, _ = build({doc("D1")})
        with pytest.raises(ValidationException):
            await retriever.retrieve("t1", "U1", "   ")


class TestPreFilter:
    """Test pre-filtering through search filters"""

    @pytest.mark.asyncio
    async def test_allowed_refs_passed_to_branches(self):
        allowed = {doc("D2"), doc("D1")}
        retriever, keyword, vector = build(
            allowed, keyword_hits=[make_hit("c1", "D1")], strategy="pre"
        )

        await retriever.retrieve("t1", "U1", "query", RetrievalOptions(top_k=4))

        filters = keyword.calls[0]["filters"]
        assert filters.resource_refs == [doc("D1"), doc("D2")]
        assert keyword.calls[0]["limit"] == 4
        assert vector.calls[0]["filters"] is filters

    @pytest.mark.asyncio
    async def test_caller_refs_intersected(self):
        """Test a caller's resource filter cannot widen access"""
        retriever, keyword, _ = build({doc("D1")}, strategy="pre")
        options = RetrievalOptions(
            filters=SearchFilters(resource_refs=[doc("D1"), doc("D9")])
        )

        await retriever.retrieve("t1", "U1", "query", options)

        assert keyword.calls[0]["filters"].resource_refs == [doc("D1")]

    @pytest.mark.asyncio
    async def test_results_still_checked(self):
        """Test hits outside the allowed set are dropped even when pre-filtered"""
        hits = [make_hit("c1", "D1"), make_hit("c2", "D2")]
        retriever, _, _ = build({doc("D1")}, keyword_hits=hits, strategy="pre")

        result = await retriever.retrieve("t1", "U1", "query")

        assert [h.chunk_id for h in result.hits] == ["c1"]


class TestDegradation:
    """Test partial failures"""

    @pytest.mark.asyncio
    async def test_embedding_failure_runs_keyword_only(self):
        retriever, keyword, vector = build(
            {doc("D1")},
            keyword_hits=[make_hit("c1", "D1")],
            vector_hits=[make_hit("c9", "D1")],
            embedder=FixedEmbedder(error=EmbeddingException("provider down")),
        )

        result = await retriever.retrieve("t1", "U1", "query")

        assert [h.chunk_id for h in result.hits] == ["c1"]
        assert result.degraded is True
        assert vector.calls == []

    @pytest.mark.asyncio
    async def test_total_outage_raises(self):
        retriever, _, _ = build({doc("D1")}, error=RuntimeError("db down"))
        retriever.fuser.vector_retriever.error = RuntimeError("index down")

        with pytest.raises(RetrievalException):
            await retriever.retrieve("t1", "U1", "query")
