"""
Common Pydantic Models
Shared API schemas
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Error detail model"""
    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Error message")
    timestamp: Optional[str] = Field(None, description="Error timestamp")


class ErrorResponse(BaseModel):
    """Standard error response"""
    error: ErrorDetail


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Health status: healthy or degraded")
    version: str = Field(..., description="Application version")
    timestamp: Optional[str] = Field(None, description="Response timestamp")
    services: Dict[str, str] = Field(default_factory=dict, description="Dependency health")
