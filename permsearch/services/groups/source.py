"""
Membership Sources
Where direct group memberships are read from during expansion
"""

from abc import ABC, abstractmethod
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from permsearch.core.exceptions import UpstreamUnavailableException
from permsearch.db.models import GroupMembership
from permsearch.services.groups.models import MembershipEdge


class MembershipSource(ABC):
    """Supplies the direct members of one external group"""

    @abstractmethod
    async def fetch_members(
        self,
        session: AsyncSession,
        tenant_id: str,
        provider: str,
        group_id: str,
    ) -> List[MembershipEdge]:
        """
        Fetch direct members of a group

        Raises:
            UpstreamUnavailableException: If the source cannot be reached
        """


class DatabaseMembershipSource(MembershipSource):
    """Reads the connector-synced membership snapshot from the database"""

    async def fetch_members(
        self,
        session: AsyncSession,
        tenant_id: str,
        provider: str,
        group_id: str,
    ) -> List[MembershipEdge]:
        try:
            result = await session.execute(
                select(GroupMembership.member_id, GroupMembership.member_type).where(
                    GroupMembership.tenant_id == tenant_id,
                    GroupMembership.provider == provider,
                    GroupMembership.group_id == group_id,
                )
            )
        except SQLAlchemyError as e:
            raise UpstreamUnavailableException(
                message="Membership snapshot unavailable",
                upstream="membership_store",
                details={"group_id": group_id, "error": str(e)},
            ) from e

        return [
            MembershipEdge(member_id=row.member_id, member_type=row.member_type)
            for row in result.all()
        ]
