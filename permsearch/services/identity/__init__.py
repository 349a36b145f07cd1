"""
Identity Resolution Service
"""

from permsearch.services.identity.resolver import (
    IdentityResolver,
    PrincipalMemo,
    get_identity_resolver,
)

__all__ = [
    "IdentityResolver",
    "PrincipalMemo",
    "get_identity_resolver",
]
