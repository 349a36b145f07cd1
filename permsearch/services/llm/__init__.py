"""
LLM Services
Generation clients for Ollama and OpenAI-compatible endpoints
"""

from permsearch.services.llm.base import BaseLLMClient
from permsearch.services.llm.models import LLMOptions, LLMResponse, Message
from permsearch.services.llm.service import (
    close_llm_service,
    create_llm_client,
    get_llm_service,
)

__all__ = [
    "BaseLLMClient",
    "LLMOptions",
    "LLMResponse",
    "Message",
    "close_llm_service",
    "create_llm_client",
    "get_llm_service",
]
