"""
Pytest Configuration and Fixtures
Shared fixtures and configuration for all tests
"""

import os

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-at-least-32-characters")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ACL_CACHE_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SEARCH_TIMEOUT_MS", "5000")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from permsearch.core.cache import CacheManager
from permsearch.db import models  # noqa: F401
from permsearch.db.base import Base
from permsearch.db.session import build_engine
from permsearch.services.acl import ACLService
from permsearch.services.groups import GroupExpander
from permsearch.services.identity import IdentityResolver
from tests.helpers import Seeder


# ============================================
# PYTEST CONFIGURATION
# ============================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests (medium speed)")


def pytest_collection_modifyitems(config, items):
    """Add default markers based on test file path"""
    for item in items:
        if "/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# ============================================
# DATABASE FIXTURES
# ============================================

@pytest_asyncio.fixture
async def session_maker():
    """Fresh in-memory SQLite database per test"""
    engine = build_engine("sqlite+aiosqlite://")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as s:
        yield s


@pytest.fixture
def seed(session_maker):
    return Seeder(session_maker)


# ============================================
# ACL FIXTURES
# ============================================

@pytest.fixture
def cache():
    return CacheManager()


@pytest.fixture
def acl_service(session_maker, cache):
    resolver = IdentityResolver()
    return ACLService(
        session_maker=session_maker,
        cache=cache,
        expander=GroupExpander(resolver=resolver),
        resolver=resolver,
    )
