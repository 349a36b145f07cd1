"""
ACL Store & Cache
Expanded permission records, cached lookups and invalidation
"""

from permsearch.services.acl.models import (
    ACLEvent,
    GrantInput,
    GroupMembershipChanged,
    InvalidationResult,
    MembershipInput,
    PrincipalType,
    RecomputeResult,
    ResourcePermissionChanged,
    ResourceRef,
    ResourceType,
    UserRemovedFromTenant,
)
from permsearch.services.acl.service import ACLService, get_acl_service
from permsearch.services.acl.store import ACLStore

__all__ = [
    "ACLService",
    "ACLStore",
    "get_acl_service",
    "ACLEvent",
    "GrantInput",
    "GroupMembershipChanged",
    "InvalidationResult",
    "MembershipInput",
    "PrincipalType",
    "RecomputeResult",
    "ResourcePermissionChanged",
    "ResourceRef",
    "ResourceType",
    "UserRemovedFromTenant",
]
