"""
Ollama Embedding Client
HTTP client for the Ollama embeddings API
"""

from typing import List, Optional

import aiohttp

from permsearch.core.config import settings
from permsearch.core.exceptions import EmbeddingException
from permsearch.core.logging import get_logger
from permsearch.services.embedding.base import BaseEmbeddingClient

logger = get_logger(__name__)


class OllamaEmbeddingClient(BaseEmbeddingClient):
    """Embeddings via POST /api/embeddings on an Ollama server"""

    def __init__(
        self,
        host: Optional[str] = None,
        model: Optional[str] = None,
        dimension: Optional[int] = None,
        timeout: int = 30,
    ):
        super().__init__(
            model=model or settings.EMBEDDING_MODEL,
            dimension=dimension or settings.EMBEDDING_DIMENSION,
        )
        host_str = host or settings.OLLAMA_HOST
        if not host_str.startswith(("http://", "https://")):
            host_str = f"http://{host_str}"
        self.host = host_str.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        logger.info(f"OllamaEmbeddingClient initialized (host={self.host}, model={self.model})")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def _embed(self, text: str) -> List[float]:
        session = await self._get_session()
        url = f"{self.host}/api/embeddings"
        try:
            async with session.post(url, json={"model": self.model, "prompt": text}) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise EmbeddingException(
                        message=f"Ollama embeddings failed: HTTP {response.status}",
                        details={"status": response.status, "error": error_text[:500]},
                    )
                data = await response.json()
        except aiohttp.ClientError as e:
            raise EmbeddingException(
                message=f"Failed to connect to Ollama: {e}",
                details={"host": self.host, "error_type": type(e).__name__},
            ) from e
        return [float(x) for x in data.get("embedding", [])]

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("OllamaEmbeddingClient session closed")
