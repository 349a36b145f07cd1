"""
LLM Service Models
Pydantic models for generation requests and responses
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class LLMOptions(BaseModel):
    """
    Generation options

    Attributes:
        temperature: Sampling temperature. Lower = more deterministic
        top_p: Nucleus sampling parameter
        max_tokens: Maximum tokens to generate
        seed: Random seed for reproducible generation
        stop: Stop sequences
    """

    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    max_tokens: int = Field(default=1024, ge=1)
    seed: Optional[int] = Field(default=None, ge=0)
    stop: Optional[List[str]] = None

    def to_ollama_format(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "num_predict": self.max_tokens,
        }
        if self.seed is not None:
            options["seed"] = self.seed
        if self.stop:
            options["stop"] = self.stop
        return options

    def to_openai_format(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "max_tokens": self.max_tokens,
        }
        if self.seed is not None:
            options["seed"] = self.seed
        if self.stop:
            options["stop"] = self.stop
        return options


class Message(BaseModel):
    """Chat message"""

    role: str = Field(..., description="system, user or assistant")
    content: str = Field(..., min_length=1)

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        valid_roles = ["system", "user", "assistant"]
        if v not in valid_roles:
            raise ValueError(f"Role must be one of {valid_roles}, got '{v}'")
        return v

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class LLMResponse(BaseModel):
    """
    Generation response

    Attributes:
        content: Generated text
        model: Model name used
        finish_reason: Reason for completion (stop, length, ...)
        prompt_tokens: Tokens in the prompt, as reported by the provider
        completion_tokens: Tokens generated
        processing_time_ms: Wall time of the request
    """

    content: str
    model: str
    finish_reason: str = "stop"
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    processing_time_ms: float = Field(default=0.0, ge=0)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens
