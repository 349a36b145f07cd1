"""
API Dependencies
Common dependencies for API routes
"""

from typing import Optional

from fastapi import Depends, Header

from permsearch.core.config import settings
from permsearch.core.exceptions import AuthenticationException, AuthorizationException
from permsearch.core.security import TokenPrincipal, verify_access_token


async def get_current_principal(
    authorization: Optional[str] = Header(None),
) -> TokenPrincipal:
    """
    Dependency to get the calling user and tenant from the JWT

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        Principal named by the token

    Raises:
        AuthenticationException: If the header or token is invalid
    """
    if not authorization:
        raise AuthenticationException(message="Missing authorization header")

    if not authorization.startswith("Bearer "):
        raise AuthenticationException(message="Invalid authorization header format")

    return verify_access_token(authorization.split(" ", 1)[1])


async def require_maintenance_role(
    principal: TokenPrincipal = Depends(get_current_principal),
) -> TokenPrincipal:
    """Maintenance endpoints are restricted to the sync service role"""
    if not principal.has_role(settings.MAINTENANCE_ROLE):
        raise AuthorizationException(
            message="Maintenance role required",
            details={"required_role": settings.MAINTENANCE_ROLE},
        )
    return principal
