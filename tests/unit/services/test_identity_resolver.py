#!/usr/bin/env python3
"""
Unit Tests for Identity Resolution
Tests for permsearch/services/identity/resolver.py
"""

import pytest
from sqlalchemy import select

from permsearch.db.models import IdentityLink
from permsearch.services.identity import IdentityResolver
from tests.helpers import email


@pytest.fixture
def resolver():
    return IdentityResolver()


class TestIdentityResolver:
    """Test external principal resolution"""

    @pytest.mark.asyncio
    async def test_email_match_creates_unverified_link(self, resolver, seed, session):
        """Test an email match resolves and records an unverified link"""
        await seed.users("U1")

        user_id = await resolver.resolve(session, "t1", "google", email("U1"))
        await session.commit()

        assert user_id == "U1"
        link = (await session.execute(select(IdentityLink))).scalar_one()
        assert link.external_id == email("U1")
        assert link.verified is False

    @pytest.mark.asyncio
    async def test_email_match_is_case_insensitive(self, resolver, seed, session):
        await seed.users("U1")
        assert await resolver.resolve(session, "t1", "google", "U1@EXAMPLE.COM") == "U1"

    @pytest.mark.asyncio
    async def test_existing_link_wins(self, resolver, seed, session):
        """Test an identity link is used before email matching"""
        await seed.users("U1", "U2")
        session.add(
            IdentityLink(tenant_id="t1", provider="slack", external_id="S-42", user_id="U2")
        )
        await session.commit()

        assert await resolver.resolve(session, "t1", "slack", "S-42") == "U2"

    @pytest.mark.asyncio
    async def test_unknown_principal_returns_none(self, resolver, seed, session):
        """Test an unresolvable principal never defaults to access"""
        await seed.users("U1")
        assert await resolver.resolve(session, "t1", "google", "ghost@example.com") is None
        assert await resolver.resolve(session, "t1", "google", "not-an-email") is None

    @pytest.mark.asyncio
    async def test_inactive_user_not_resolved(self, resolver, seed, session):
        """Test deactivated users are not resolved by email"""
        await seed.users("U1", inactive=["U1"])
        assert await resolver.resolve(session, "t1", "google", email("U1")) is None

    @pytest.mark.asyncio
    async def test_resolution_is_tenant_scoped(self, resolver, seed, session):
        """Test a user of another tenant is not matched"""
        await seed.users("U1")
        assert await resolver.resolve(session, "t2", "google", email("U1")) is None

    @pytest.mark.asyncio
    async def test_memo_short_circuits(self, resolver, seed, session):
        """Test memoized principals skip the database"""
        memo = {("google", "x@example.com"): "U9"}
        assert await resolver.resolve(session, "t1", "google", "x@example.com", memo=memo) == "U9"

    @pytest.mark.asyncio
    async def test_memo_records_misses(self, resolver, seed, session):
        memo = {}
        await resolver.resolve(session, "t1", "google", "ghost@example.com", memo=memo)
        assert memo == {("google", "ghost@example.com"): None}

    @pytest.mark.asyncio
    async def test_resolve_many(self, resolver, seed, session):
        """Test several principals resolve independently"""
        await seed.users("U1", "U2")

        resolved = await resolver.resolve_many(
            session, "t1", "google", [email("U1"), "ghost@example.com", email("U2")]
        )

        assert resolved == {
            email("U1"): "U1",
            "ghost@example.com": None,
            email("U2"): "U2",
        }
