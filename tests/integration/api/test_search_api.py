#!/usr/bin/env python3
"""
Integration Tests for Search API
Tests for permsearch/api/v1/search.py endpoints
"""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from permsearch.core.security import create_access_token


@pytest.mark.integration
class TestSearchAPIAuth:
    """Test authentication requirements for the search endpoint"""

    @pytest.mark.asyncio
    async def test_search_without_auth_returns_401(self, client: AsyncClient):
        """Test search without authentication token returns 401"""
        response = await client.post("/api/v1/search", json={"query": "zebra"})

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "authentication_error"

    @pytest.mark.asyncio
    async def test_search_with_invalid_token_returns_401(self, client: AsyncClient):
        """Test search with invalid token returns 401"""
        response = await client.post(
            "/api/v1/search",
            headers={"Authorization": "Bearer invalid_token_12345"},
            json={"query": "zebra"},
        )

        assert response.status_code == 401
        assert "error" in response.json()

    @pytest.mark.asyncio
    async def test_search_with_malformed_header_returns_401(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/search",
            headers={"Authorization": "InvalidFormat token123"},
            json={"query": "zebra"},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_search_with_expired_token_returns_401(self, client: AsyncClient):
        token = create_access_token("U1", "t1", expires_delta=timedelta(minutes=-1))
        response = await client.post(
            "/api/v1/search",
            headers={"Authorization": f"Bearer {token}"},
            json={"query": "zebra"},
        )

        assert response.status_code == 401


@pytest.mark.integration
class TestSearchAPIValidation:
    """Test input validation for the search endpoint"""

    @pytest.mark.asyncio
    async def test_empty_query_returns_400(self, client: AsyncClient, auth_headers: dict):
        response = await client.post("/api/v1/search", headers=auth_headers, json={"query": ""})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_blank_query_returns_400(self, client: AsyncClient, auth_headers: dict):
        """Test whitespace-only queries are rejected by the retriever"""
        response = await client.post("/api/v1/search", headers=auth_headers, json={"query": "   "})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_top_k_out_of_range_returns_400(self, client: AsyncClient, auth_headers: dict):
        response = await client.post(
            "/api/v1/search", headers=auth_headers, json={"query": "zebra", "top_k": 0}
        )

        assert response.status_code == 400


@pytest.mark.integration
class TestSearchAPIResults:
    """Test permission-filtered results"""

    @pytest.mark.asyncio
    async def test_returns_permitted_hits(self, client: AsyncClient, auth_headers: dict):
        response = await client.post(
            "/api/v1/search", headers=auth_headers, json={"query": "zebra budget", "top_k": 5}
        )

        assert response.status_code == 200
        result = response.json()
        assert {r["resource_id"] for r in result["results"]} == {"D1", "D2"}
        assert result["total"] == 2
        assert result["degraded"] is False

    @pytest.mark.asyncio
    async def test_user_without_grants_gets_empty_results(self, client: AsyncClient):
        headers = {"Authorization": f"Bearer {create_access_token('U2', 't1')}"}
        response = await client.post(
            "/api/v1/search", headers=headers, json={"query": "zebra budget"}
        )

        assert response.status_code == 200
        assert response.json()["results"] == []

    @pytest.mark.asyncio
    async def test_resource_type_filter(self, client: AsyncClient, auth_headers: dict):
        response = await client.post(
            "/api/v1/search",
            headers=auth_headers,
            json={"query": "zebra budget", "filters": {"resource_types": ["email"]}},
        )

        assert response.status_code == 200
        assert response.json()["results"] == []

    @pytest.mark.asyncio
    async def test_search_outage_returns_generic_503(
        self, client: AsyncClient, auth_headers: dict, retriever, monkeypatch
    ):
        """Test upstream failure details are not leaked to the caller"""

        async def broken(*args, **kwargs):
            raise RuntimeError("sqlite:///var/lib/secret.db is locked")

        monkeypatch.setattr(retriever.fuser.keyword_retriever, "search", broken)
        monkeypatch.setattr(retriever.fuser.vector_retriever, "search", broken)

        response = await client.post(
            "/api/v1/search", headers=auth_headers, json={"query": "zebra"}
        )

        assert response.status_code == 503
        error = response.json()["error"]
        assert error["message"] == "Search temporarily unavailable"
        assert "secret" not in response.text
