"""
Conftest for integration tests
File-backed database so concurrent search branches get separate connections
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from permsearch.db.base import Base
from permsearch.services.embedding import BaseEmbeddingClient
from permsearch.services.retrieval import (
    ACLFilteredRetriever,
    DatabaseVectorRetriever,
    HybridSearchFuser,
    KeywordRetriever,
)
from tests.helpers import KeywordVectorEmbedder

VOCABULARY = ["zebra", "budget", "menu"]


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """Overrides the in-memory database with one connection per session"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'permsearch.db'}", poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def embedder() -> BaseEmbeddingClient:
    return KeywordVectorEmbedder(VOCABULARY)


@pytest.fixture
def retriever(acl_service, session_maker, embedder):
    """ACL-filtered retriever over the database search branches"""
    fuser = HybridSearchFuser(
        keyword_retriever=KeywordRetriever(session_maker=session_maker),
        vector_retriever=DatabaseVectorRetriever(session_maker=session_maker),
    )
    return ACLFilteredRetriever(acl_service=acl_service, fuser=fuser, embedding_service=embedder)


@pytest_asyncio.fixture
async def corpus(seed, acl_service):
    """
    D1 matches "zebra budget" by keyword only, D2 by vector only.
    D3 is vector-visible but granted to nobody.
    """
    await seed.users("U1", "U2")
    await seed.chunk("c1", "D1", "zebra migration field notes", embedding=None)
    await seed.chunk("c2", "D2", "annual financial planning figures", embedding=[0.0, 1.0, 0.0])
    await seed.chunk("c3", "D3", "cafeteria lunch options", embedding=[0.0, 0.0, 1.0])
    await seed.grant("D1", "U1@example.com")
    await seed.grant("D2", "U1@example.com")
    for resource_id in ("D1", "D2", "D3"):
        await acl_service.recompute_acl("t1", resource_id, "document")
    return seed
