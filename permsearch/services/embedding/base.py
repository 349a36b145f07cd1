"""
Embedding Base Classes
Abstract base class for external embedding providers
"""

import time
from abc import ABC, abstractmethod
from typing import List, Optional

from permsearch.core.exceptions import EmbeddingException, ValidationException
from permsearch.core.logging import get_logger
from permsearch.services.embedding.models import Embedding, TextEmbedding

logger = get_logger(__name__)


class BaseEmbeddingClient(ABC):
    """
    Abstract base class for embedding providers

    Implementations call an external service; the model itself is not
    hosted in this process.
    """

    def __init__(self, model: str, dimension: Optional[int] = None):
        self.model = model
        self.dimension = dimension

    @abstractmethod
    async def _embed(self, text: str) -> List[float]:
        """
        Call the provider for one text

        Raises:
            EmbeddingException: If the provider call fails
        """

    async def embed_text(self, text: str) -> TextEmbedding:
        """
        Embed a single text

        Args:
            text: Input text

        Returns:
            TextEmbedding with vector and metadata

        Raises:
            ValidationException: If the text is empty
            EmbeddingException: If the provider fails or returns a bad vector
        """
        text = (text or "").strip()
        if not text:
            raise ValidationException("Text cannot be empty or whitespace only")

        start_time = time.time()
        vector = await self._embed(text)
        if not vector:
            raise EmbeddingException(
                message="Embedding provider returned an empty vector",
                details={"model": self.model},
            )
        if self.dimension and len(vector) != self.dimension:
            raise EmbeddingException(
                message="Embedding dimension mismatch",
                details={"model": self.model, "expected": self.dimension, "got": len(vector)},
            )

        processing_time_ms = int((time.time() - start_time) * 1000)
        logger.debug(f"Embedded query with {self.model} in {processing_time_ms}ms")
        return TextEmbedding(
            text=text,
            embedding=Embedding(vector=vector, dimension=len(vector), model=self.model),
            processing_time_ms=processing_time_ms,
        )

    async def embed_query(self, text: str) -> List[float]:
        """Embed a search query and return the raw vector"""
        result = await self.embed_text(text)
        return result.embedding.vector

    async def close(self) -> None:
        return None
