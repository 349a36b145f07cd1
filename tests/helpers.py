"""
Test Helpers
Seeding utilities and search fakes shared by unit and integration tests
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import async_sessionmaker

from permsearch.db.models import Chunk, GrantEntry, GroupMembership, User
from permsearch.services.embedding import BaseEmbeddingClient
from permsearch.services.llm import BaseLLMClient, LLMResponse, Message
from permsearch.services.retrieval import BaseRetriever, SearchFilters, SearchHit


def email(user_id: str) -> str:
    """External principal ID the connector uses for an internal user"""
    return f"{user_id}@example.com"


class Seeder:
    """Writes permission facts and chunks the way connectors and ingestion would"""

    def __init__(self, session_maker: async_sessionmaker, tenant_id: str = "t1"):
        self.session_maker = session_maker
        self.tenant_id = tenant_id

    async def users(self, *user_ids: str, inactive: Iterable[str] = ()) -> None:
        inactive = set(inactive)
        async with self.session_maker() as session:
            for user_id in user_ids:
                session.add(
                    User(
                        tenant_id=self.tenant_id,
                        user_id=user_id,
                        email=email(user_id),
                        is_active=user_id not in inactive,
                    )
                )
            await session.commit()

    async def grant(
        self,
        resource_id: str,
        principal_id: str,
        principal_type: str = "user",
        resource_type: str = "document",
        source_system: str = "google",
        **fields: Any,
    ) -> None:
        async with self.session_maker() as session:
            session.add(
                GrantEntry(
                    tenant_id=self.tenant_id,
                    resource_id=resource_id,
                    resource_type=resource_type,
                    principal_id=principal_id,
                    principal_type=principal_type,
                    source_system=source_system,
                    **fields,
                )
            )
            await session.commit()

    async def member(
        self,
        group_id: str,
        member_id: str,
        member_type: str = "user",
        provider: str = "google",
    ) -> None:
        async with self.session_maker() as session:
            session.add(
                GroupMembership(
                    tenant_id=self.tenant_id,
                    provider=provider,
                    group_id=group_id,
                    member_id=member_id,
                    member_type=member_type,
                )
            )
            await session.commit()

    async def chunk(
        self,
        chunk_id: str,
        resource_id: str,
        content: str,
        embedding: Optional[List[float]] = None,
        resource_type: str = "document",
        tenant_id: Optional[str] = None,
        location_metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        async with self.session_maker() as session:
            session.add(
                Chunk(
                    tenant_id=tenant_id or self.tenant_id,
                    chunk_id=chunk_id,
                    resource_id=resource_id,
                    resource_type=resource_type,
                    content=content,
                    embedding=embedding,
                    location_metadata=location_metadata or {},
                )
            )
            await session.commit()


def make_hit(chunk_id: str, resource_id: Optional[str] = None, **fields: Any) -> SearchHit:
    return SearchHit(
        chunk_id=chunk_id,
        resource_id=resource_id or f"doc-{chunk_id}",
        resource_type=fields.pop("resource_type", "document"),
        content=fields.pop("content", f"content of {chunk_id}"),
        **fields,
    )


class StaticRetriever(BaseRetriever):
    """Search branch returning a fixed ranking, or failing"""

    def __init__(
        self,
        name: str,
        hits: Sequence[SearchHit] = (),
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        super().__init__(name=name)
        self.hits = list(hits)
        self.error = error
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def search(self, tenant_id, query_text, query_embedding, limit, filters: SearchFilters):
        self.calls.append(
            {"tenant_id": tenant_id, "embedding": query_embedding, "limit": limit, "filters": filters}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.hits[:limit]


class KeywordVectorEmbedder(BaseEmbeddingClient):
    """Deterministic embeddings: one dimension per vocabulary word"""

    def __init__(self, vocabulary: Sequence[str]):
        super().__init__(model="test-embedder", dimension=len(vocabulary))
        self.vocabulary = [w.lower() for w in vocabulary]

    async def _embed(self, text: str) -> List[float]:
        words = text.lower().split()
        vector = [float(words.count(w)) for w in self.vocabulary]
        if not any(vector):
            vector[0] = 0.01
        return vector


class ScriptedLLM(BaseLLMClient):
    """Generator returning a fixed answer, or failing"""

    provider = "scripted"

    def __init__(self, content: str = "", error: Optional[Exception] = None):
        super().__init__(model="scripted-model")
        self.content = content
        self.error = error
        self.messages: Optional[List[Message]] = None

    async def chat(self, messages, options=None) -> LLMResponse:
        self.messages = messages
        if self.error is not None:
            raise self.error
        return LLMResponse(
            content=self.content, model=self.model, prompt_tokens=10, completion_tokens=5
        )
