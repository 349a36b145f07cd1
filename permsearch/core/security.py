"""
Security Utilities
JWT access tokens identifying the calling user and tenant
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from jose import JWTError, jwt
from pydantic import BaseModel, Field

from permsearch.core.config import settings
from permsearch.core.exceptions import AuthenticationException


class TokenPrincipal(BaseModel):
    """Caller identity carried by an access token"""

    user_id: str
    tenant_id: str
    roles: List[str] = Field(default_factory=list)

    def has_role(self, role: str) -> bool:
        return role in self.roles


def create_access_token(
    user_id: str,
    tenant_id: str,
    roles: Optional[List[str]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token"""
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode: Dict[str, Any] = {
        "sub": user_id,
        "tenant_id": tenant_id,
        "roles": roles or [],
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and verify a JWT token"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        raise AuthenticationException(
            message="Invalid token",
            details={"error": str(e)},
        ) from e


def verify_access_token(token: str) -> TokenPrincipal:
    """Verify an access token and return the caller it names"""
    payload = decode_token(token)

    if payload.get("type") != "access":
        raise AuthenticationException(
            message="Invalid token type",
            details={"expected": "access", "got": payload.get("type")},
        )
    if not payload.get("sub") or not payload.get("tenant_id"):
        raise AuthenticationException(message="Token is missing subject or tenant")

    return TokenPrincipal(
        user_id=payload["sub"],
        tenant_id=payload["tenant_id"],
        roles=list(payload.get("roles") or []),
    )
