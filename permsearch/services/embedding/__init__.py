"""
Embedding Service
Query embeddings from external providers
"""

from permsearch.services.embedding.base import BaseEmbeddingClient
from permsearch.services.embedding.models import Embedding, TextEmbedding
from permsearch.services.embedding.service import (
    close_embedding_service,
    create_embedding_client,
    get_embedding_service,
)

__all__ = [
    "BaseEmbeddingClient",
    "Embedding",
    "TextEmbedding",
    "close_embedding_service",
    "create_embedding_client",
    "get_embedding_service",
]
