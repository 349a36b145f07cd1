"""
Conftest for API integration tests
Defines fixtures specific to API testing

Note: These tests use ASGI transport, which does not run the app lifespan;
services are injected through dependency overrides.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from permsearch.core.config import settings
from permsearch.core.security import create_access_token
from permsearch.main import app
from permsearch.services.acl import get_acl_service
from permsearch.services.rag import AnswerService, get_answer_service
from permsearch.services.retrieval import get_retriever
from tests.helpers import ScriptedLLM


@pytest.fixture
def llm():
    return ScriptedLLM("Zebras migrate each spring [1]. Budgets are annual [2].")


@pytest_asyncio.fixture
async def client(acl_service, retriever, llm, corpus) -> AsyncClient:
    """
    Test HTTP client using ASGI transport
    Tests the FastAPI app directly without requiring a running server
    """
    app.dependency_overrides[get_acl_service] = lambda: acl_service
    app.dependency_overrides[get_retriever] = lambda: retriever
    app.dependency_overrides[get_answer_service] = lambda: AnswerService(retriever=retriever, llm=llm)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Bearer token for U1 in tenant t1"""
    return {"Authorization": f"Bearer {create_access_token('U1', 't1')}"}


@pytest.fixture
def maintenance_headers():
    """Bearer token carrying the sync service role"""
    token = create_access_token("sync-bot", "t1", roles=[settings.MAINTENANCE_ROLE])
    return {"Authorization": f"Bearer {token}"}
