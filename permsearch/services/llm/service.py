"""
LLM Service
Provider selection for answer generation
"""

from typing import Optional

from permsearch.core.config import settings
from permsearch.core.logging import get_logger
from permsearch.services.llm.base import BaseLLMClient

logger = get_logger(__name__)

# Global LLM client
_llm_service: Optional[BaseLLMClient] = None


def create_llm_client(provider: Optional[str] = None) -> BaseLLMClient:
    """
    Build the generation client for a provider

    Args:
        provider: "ollama" or "openai" (defaults to LLM_PROVIDER)
    """
    provider = provider or settings.LLM_PROVIDER
    if provider == "openai":
        from permsearch.services.llm.openai_client import OpenAICompatClient

        return OpenAICompatClient()

    from permsearch.services.llm.ollama_client import OllamaClient

    return OllamaClient()


def get_llm_service() -> BaseLLMClient:
    """Get the global generation client"""
    global _llm_service
    if _llm_service is None:
        _llm_service = create_llm_client()
        logger.info(f"LLM provider: {_llm_service.provider} ({_llm_service.model})")
    return _llm_service


async def close_llm_service() -> None:
    global _llm_service
    if _llm_service is not None:
        await _llm_service.close()
        _llm_service = None
