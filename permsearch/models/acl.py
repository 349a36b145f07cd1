"""
ACL Pydantic Models
Request schemas for maintenance endpoints
"""

from typing import List, Literal

from pydantic import BaseModel, Field

from permsearch.services.acl.models import ACLEvent, GrantInput, MembershipInput, ResourceType


class RecomputeRequest(BaseModel):
    """Recompute one resource's ExpandedACL"""
    resource_id: str = Field(..., min_length=1)
    resource_type: ResourceType

    model_config = {"use_enum_values": True}


class GrantSnapshotRequest(BaseModel):
    """Grant snapshot from one source system"""
    resource_id: str = Field(..., min_length=1)
    resource_type: ResourceType
    source_system: str = Field(..., min_length=1, max_length=64)
    grants: List[GrantInput] = Field(default_factory=list)
    mode: Literal["replace", "append"] = "replace"

    model_config = {"use_enum_values": True}


class MembershipSnapshotRequest(BaseModel):
    """Direct members of one external group"""
    provider: str = Field(..., min_length=1, max_length=64)
    group_id: str = Field(..., min_length=1)
    members: List[MembershipInput] = Field(default_factory=list)


class InvalidationRequest(BaseModel):
    """Permission-change event to apply"""
    event: ACLEvent
