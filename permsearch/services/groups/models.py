"""
Group Expansion Models
Pydantic models and per-pass state for group expansion
"""

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Set, Tuple

from pydantic import BaseModel, Field

from permsearch.services.identity.resolver import PrincipalMemo

MemberType = Literal["user", "group"]


class MembershipEdge(BaseModel):
    """A direct member of an external group"""

    member_id: str = Field(description="Email/ID for users, ID for groups")
    member_type: MemberType = Field(description="'user' or 'group'")

    model_config = {"frozen": True}


class CycleWarning(BaseModel):
    """A group reached again during one expansion call"""

    group_id: str
    via_group_id: str


class ExpansionResult(BaseModel):
    """Outcome of expanding one group"""

    group_id: str
    provider: str
    user_ids: Set[str] = Field(default_factory=set)
    visited_groups: Set[str] = Field(default_factory=set)
    cycles: List[CycleWarning] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict, description="group_id -> fetch error")

    @property
    def complete(self) -> bool:
        return not self.errors


@dataclass
class ExpansionPass:
    """
    State shared by every expansion within one sync pass

    A shared sub-group is fetched and flattened once per pass. Only
    complete closures are memoized.
    """

    principals: PrincipalMemo = field(default_factory=dict)
    closures: Dict[Tuple[str, str], ExpansionResult] = field(default_factory=dict)
    failed_groups: Dict[Tuple[str, str], str] = field(default_factory=dict)

    def closure(self, provider: str, group_id: str) -> Optional[ExpansionResult]:
        return self.closures.get((provider, group_id))

    def remember(self, result: ExpansionResult) -> None:
        if result.complete:
            self.closures[(result.provider, result.group_id)] = result
        for group_id, error in result.errors.items():
            self.failed_groups[(result.provider, group_id)] = error
