"""
ACL Models
Resource references, invalidation events and recompute results
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, Field


class ResourceType(str, Enum):
    DOCUMENT = "document"
    EMAIL = "email"


class PrincipalType(str, Enum):
    USER = "user"
    GROUP = "group"


class ResourceRef(NamedTuple):
    """A resource within one tenant; IDs are unique per resource type"""

    resource_type: str
    resource_id: str

    def to_list(self) -> List[str]:
        return [self.resource_type, self.resource_id]

    def __str__(self) -> str:
        return f"{self.resource_type}:{self.resource_id}"


class ResourcePermissionChanged(BaseModel):
    """The grant list of one resource changed"""

    event_type: Literal["resource_permission_changed"] = "resource_permission_changed"
    tenant_id: str
    resource_id: str
    resource_type: ResourceType

    model_config = {"use_enum_values": True}


class GroupMembershipChanged(BaseModel):
    """Direct membership of an external group changed"""

    event_type: Literal["group_membership_changed"] = "group_membership_changed"
    tenant_id: str
    provider: str
    group_id: str


class UserRemovedFromTenant(BaseModel):
    """A user lost access to the tenant altogether"""

    event_type: Literal["user_removed_from_tenant"] = "user_removed_from_tenant"
    tenant_id: str
    user_id: str


ACLEvent = Annotated[
    Union[ResourcePermissionChanged, GroupMembershipChanged, UserRemovedFromTenant],
    Field(discriminator="event_type"),
]


class RecomputeResult(BaseModel):
    """Outcome of one ExpandedACL recomputation"""

    tenant_id: str
    resource_id: str
    resource_type: str
    expansion_version: int
    allowed_user_ids: List[str] = Field(default_factory=list)
    added_user_ids: List[str] = Field(default_factory=list)
    removed_user_ids: List[str] = Field(default_factory=list)
    source_groups: List[str] = Field(default_factory=list)
    incomplete_groups: List[str] = Field(
        default_factory=list, description="Granted groups whose expansion hit fetch errors"
    )


class InvalidationResult(BaseModel):
    """Outcome of applying one invalidation event"""

    event_type: str
    tenant_id: str
    resources_recomputed: List[str] = Field(default_factory=list)
    groups_refreshed: List[str] = Field(default_factory=list)
    keys_invalidated: int = 0
    failures: Dict[str, str] = Field(default_factory=dict, description="resource -> error")

    @property
    def ok(self) -> bool:
        return not self.failures


class GrantInput(BaseModel):
    """One grant in a connector snapshot"""

    principal_id: str
    principal_type: PrincipalType
    permission: Literal["read"] = "read"
    expires_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}


class MembershipInput(BaseModel):
    """One direct member in a connector snapshot"""

    member_id: str
    member_type: PrincipalType

    model_config = {"use_enum_values": True}
