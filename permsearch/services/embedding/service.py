"""
Embedding Service
Provider selection for query embeddings
"""

from typing import Optional

from permsearch.core.config import settings
from permsearch.core.logging import get_logger
from permsearch.services.embedding.base import BaseEmbeddingClient

logger = get_logger(__name__)

# Global embedding client
_embedding_service: Optional[BaseEmbeddingClient] = None


def create_embedding_client(provider: Optional[str] = None) -> BaseEmbeddingClient:
    """
    Build the embedding client for a provider

    Args:
        provider: "ollama" or "openai" (defaults to EMBEDDING_PROVIDER)
    """
    provider = provider or settings.EMBEDDING_PROVIDER
    if provider == "openai":
        from permsearch.services.embedding.openai_compat import OpenAIEmbeddingClient

        return OpenAIEmbeddingClient()

    from permsearch.services.embedding.ollama import OllamaEmbeddingClient

    return OllamaEmbeddingClient()


def get_embedding_service() -> BaseEmbeddingClient:
    """Get the global embedding client"""
    global _embedding_service
    if _embedding_service is None:
        _embedding_service = create_embedding_client()
        logger.info(f"Embedding provider: {settings.EMBEDDING_PROVIDER} ({_embedding_service.model})")
    return _embedding_service


async def close_embedding_service() -> None:
    global _embedding_service
    if _embedding_service is not None:
        await _embedding_service.close()
        _embedding_service = None
