"""
Embedding Service Models
Pydantic models for query embedding results
"""

from typing import List

from pydantic import BaseModel, Field, ValidationInfo, field_validator


class Embedding(BaseModel):
    """
    A single text embedding vector

    Attributes:
        vector: The embedding vector
        dimension: Dimension of the embedding vector
        model: Model name used to generate the embedding
    """

    vector: List[float] = Field(..., description="Embedding vector")
    dimension: int = Field(..., ge=1, description="Embedding dimension")
    model: str = Field(..., description="Model name")

    @field_validator("vector")
    @classmethod
    def validate_vector(cls, v: List[float], info: ValidationInfo) -> List[float]:
        """Validate vector matches declared dimension"""
        if "dimension" in info.data:
            expected_dim = info.data["dimension"]
            if len(v) != expected_dim:
                raise ValueError(
                    f"Vector length {len(v)} does not match dimension {expected_dim}"
                )
        return v


class TextEmbedding(BaseModel):
    """Text with its embedding and generation time"""

    text: str = Field(..., description="Original text")
    embedding: Embedding = Field(..., description="Generated embedding")
    processing_time_ms: int = Field(..., ge=0, description="Processing time in ms")
