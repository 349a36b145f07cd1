"""
OpenAI-compatible Embedding Client
Embeddings through any endpoint speaking the OpenAI API
"""

from typing import List, Optional

from openai import APIError, AsyncOpenAI

from permsearch.core.config import settings
from permsearch.core.exceptions import EmbeddingException
from permsearch.services.embedding.base import BaseEmbeddingClient


class OpenAIEmbeddingClient(BaseEmbeddingClient):
    """Embeddings via the `openai` SDK"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        dimension: Optional[int] = None,
    ):
        super().__init__(
            model=model or settings.EMBEDDING_MODEL,
            dimension=dimension or settings.EMBEDDING_DIMENSION,
        )
        self._client = AsyncOpenAI(
            api_key=api_key or settings.OPENAI_API_KEY,
            base_url=base_url or settings.OPENAI_BASE_URL,
        )

    async def _embed(self, text: str) -> List[float]:
        try:
            response = await self._client.embeddings.create(model=self.model, input=text)
        except APIError as e:
            raise EmbeddingException(
                message=f"Embedding request failed: {e}",
                details={"model": self.model, "error_type": type(e).__name__},
            ) from e
        return list(response.data[0].embedding)

    async def close(self) -> None:
        await self._client.close()
