"""
Group Expansion Service
Flattens nested external groups into internal user sets
"""

from permsearch.services.groups.expander import GroupExpander, get_group_expander
from permsearch.services.groups.models import (
    CycleWarning,
    ExpansionPass,
    ExpansionResult,
    MembershipEdge,
)
from permsearch.services.groups.source import DatabaseMembershipSource, MembershipSource

__all__ = [
    "GroupExpander",
    "get_group_expander",
    "CycleWarning",
    "ExpansionPass",
    "ExpansionResult",
    "MembershipEdge",
    "DatabaseMembershipSource",
    "MembershipSource",
]
