"""
ACL Store
SQL access to grants, memberships and expanded ACLs
"""

from collections import deque
from datetime import datetime
from typing import Deque, Iterable, List, Optional, Set, Tuple

from sqlalchemy import and_, delete, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from permsearch.core.exceptions import ConcurrentUpdateException
from permsearch.db.base import utcnow
from permsearch.db.dialect import insert_for
from permsearch.db.models import (
    ExpandedACL,
    ExpandedACLUser,
    ExternalGroup,
    GrantEntry,
    GroupMembership,
    IdentityLink,
    User,
)
from permsearch.services.acl.models import (
    GrantInput,
    MembershipInput,
    PrincipalType,
    ResourceRef,
)


class ACLStore:
    """
    Source of truth for permissions

    Methods never commit; the caller owns the transaction so that an
    ExpandedACL row, its per-user index rows and any refreshed group rows
    land together.
    """

    # Expanded ACLs

    async def get_expanded_acl(
        self,
        session: AsyncSession,
        tenant_id: str,
        resource_type: str,
        resource_id: str,
    ) -> Optional[ExpandedACL]:
        result = await session.execute(
            select(ExpandedACL).where(
                ExpandedACL.tenant_id == tenant_id,
                ExpandedACL.resource_type == resource_type,
                ExpandedACL.resource_id == resource_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_allowed_users(
        self,
        session: AsyncSession,
        tenant_id: str,
        resource_type: str,
        resource_id: str,
    ) -> List[str]:
        acl = await self.get_expanded_acl(session, tenant_id, resource_type, resource_id)
        if acl is None:
            return []
        return sorted(acl.allowed_user_ids)

    async def get_allowed_resources(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
    ) -> List[ResourceRef]:
        result = await session.execute(
            select(ExpandedACLUser.resource_type, ExpandedACLUser.resource_id)
            .where(
                ExpandedACLUser.tenant_id == tenant_id,
                ExpandedACLUser.user_id == user_id,
            )
            .order_by(ExpandedACLUser.resource_type, ExpandedACLUser.resource_id)
        )
        return [ResourceRef(row.resource_type, row.resource_id) for row in result.all()]

    async def write_expanded_acl(
        self,
        session: AsyncSession,
        tenant_id: str,
        resource_type: str,
        resource_id: str,
        allowed_user_ids: Iterable[str],
        source_groups: Iterable[str],
        expected_version: int,
        exists: bool,
    ) -> int:
        """
        Write a new ExpandedACL version with compare-and-swap

        Args:
            expected_version: Version read before the recompute started
            exists: Whether a row existed at that version

        Returns:
            The new expansion_version

        Raises:
            ConcurrentUpdateException: If another writer moved the version
        """
        allowed = sorted(set(allowed_user_ids))
        groups = sorted(set(source_groups))
        new_version = expected_version + 1
        now = utcnow()

        if exists:
            result = await session.execute(
                update(ExpandedACL)
                .where(
                    ExpandedACL.tenant_id == tenant_id,
                    ExpandedACL.resource_type == resource_type,
                    ExpandedACL.resource_id == resource_id,
                    ExpandedACL.expansion_version == expected_version,
                )
                .values(
                    allowed_user_ids=allowed,
                    source_groups=groups,
                    expansion_version=new_version,
                    expanded_at=now,
                )
            )
        else:
            result = await session.execute(
                insert_for(session, ExpandedACL)
                .values(
                    tenant_id=tenant_id,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    allowed_user_ids=allowed,
                    source_groups=groups,
                    expansion_version=new_version,
                    expanded_at=now,
                )
                .on_conflict_do_nothing(
                    index_elements=["tenant_id", "resource_id", "resource_type"]
                )
            )

        if result.rowcount != 1:
            raise ConcurrentUpdateException(
                details={
                    "tenant_id": tenant_id,
                    "resource": f"{resource_type}:{resource_id}",
                    "expected_version": expected_version,
                }
            )

        await session.execute(
            delete(ExpandedACLUser).where(
                ExpandedACLUser.tenant_id == tenant_id,
                ExpandedACLUser.resource_type == resource_type,
                ExpandedACLUser.resource_id == resource_id,
            )
        )
        if allowed:
            await session.execute(
                insert(ExpandedACLUser),
                [
                    {
                        "tenant_id": tenant_id,
                        "resource_type": resource_type,
                        "resource_id": resource_id,
                        "user_id": user_id,
                    }
                    for user_id in allowed
                ],
            )
        return new_version

    async def remove_user_from_acl(
        self,
        session: AsyncSession,
        tenant_id: str,
        ref: ResourceRef,
        user_id: str,
    ) -> None:
        """Drop one user from an ExpandedACL, bumping its version"""
        acl = await self.get_expanded_acl(session, tenant_id, ref.resource_type, ref.resource_id)
        if acl is None or user_id not in acl.allowed_user_ids:
            return
        remaining = [uid for uid in acl.allowed_user_ids if uid != user_id]
        await self.write_expanded_acl(
            session,
            tenant_id,
            ref.resource_type,
            ref.resource_id,
            remaining,
            acl.source_groups,
            expected_version=acl.expansion_version,
            exists=True,
        )

    # Grants

    async def list_active_grants(
        self,
        session: AsyncSession,
        tenant_id: str,
        resource_type: str,
        resource_id: str,
        now: Optional[datetime] = None,
    ) -> List[GrantEntry]:
        now = now or utcnow()
        result = await session.execute(
            select(GrantEntry)
            .where(
                GrantEntry.tenant_id == tenant_id,
                GrantEntry.resource_type == resource_type,
                GrantEntry.resource_id == resource_id,
                GrantEntry.permission == "read",
                or_(GrantEntry.expires_at.is_(None), GrantEntry.expires_at > now),
            )
            .order_by(GrantEntry.principal_type, GrantEntry.source_system, GrantEntry.principal_id)
        )
        return list(result.scalars().all())

    async def replace_grants(
        self,
        session: AsyncSession,
        tenant_id: str,
        resource_type: str,
        resource_id: str,
        source_system: str,
        grants: Iterable[GrantInput],
    ) -> int:
        """Replace the grant set one source system holds on a resource"""
        await session.execute(
            delete(GrantEntry).where(
                GrantEntry.tenant_id == tenant_id,
                GrantEntry.resource_type == resource_type,
                GrantEntry.resource_id == resource_id,
                GrantEntry.source_system == source_system,
            )
        )
        now = utcnow()
        rows = [
            {
                "tenant_id": tenant_id,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "principal_id": grant.principal_id,
                "principal_type": grant.principal_type,
                "permission": grant.permission,
                "source_system": source_system,
                "synced_at": now,
                "expires_at": grant.expires_at,
            }
            for grant in grants
        ]
        if rows:
            await session.execute(insert(GrantEntry), rows)
        return len(rows)

    async def find_resources_granted_to_groups(
        self,
        session: AsyncSession,
        tenant_id: str,
        provider: str,
        group_ids: Iterable[str],
    ) -> List[ResourceRef]:
        group_ids = sorted(set(group_ids))
        if not group_ids:
            return []
        result = await session.execute(
            select(GrantEntry.resource_type, GrantEntry.resource_id)
            .where(
                GrantEntry.tenant_id == tenant_id,
                GrantEntry.principal_type == PrincipalType.GROUP.value,
                GrantEntry.source_system == provider,
                GrantEntry.principal_id.in_(group_ids),
            )
            .distinct()
            .order_by(GrantEntry.resource_type, GrantEntry.resource_id)
        )
        return [ResourceRef(row.resource_type, row.resource_id) for row in result.all()]

    # Group memberships

    async def replace_group_members(
        self,
        session: AsyncSession,
        tenant_id: str,
        provider: str,
        group_id: str,
        members: Iterable[MembershipInput],
    ) -> int:
        """Replace the direct members of a group"""
        await session.execute(
            delete(GroupMembership).where(
                GroupMembership.tenant_id == tenant_id,
                GroupMembership.provider == provider,
                GroupMembership.group_id == group_id,
            )
        )
        now = utcnow()
        unique = {(m.member_type, m.member_id) for m in members}
        rows = [
            {
                "tenant_id": tenant_id,
                "provider": provider,
                "group_id": group_id,
                "member_type": member_type,
                "member_id": member_id,
                "synced_at": now,
            }
            for member_type, member_id in sorted(unique)
        ]
        if rows:
            await session.execute(insert(GroupMembership), rows)
        return len(rows)

    async def find_ancestor_groups(
        self,
        session: AsyncSession,
        tenant_id: str,
        provider: str,
        group_id: str,
    ) -> Set[str]:
        """The group plus every group that contains it, directly or transitively"""
        found: Set[str] = {group_id}
        queue: Deque[str] = deque([group_id])
        while queue:
            current = queue.popleft()
            result = await session.execute(
                select(GroupMembership.group_id).where(
                    GroupMembership.tenant_id == tenant_id,
                    GroupMembership.provider == provider,
                    GroupMembership.member_type == PrincipalType.GROUP.value,
                    GroupMembership.member_id == current,
                )
            )
            for parent in result.scalars().all():
                if parent not in found:
                    found.add(parent)
                    queue.append(parent)
        return found

    # External groups

    async def get_group_members(
        self,
        session: AsyncSession,
        tenant_id: str,
        provider: str,
        group_id: str,
    ) -> List[str]:
        result = await session.execute(
            select(ExternalGroup.member_user_ids).where(
                ExternalGroup.tenant_id == tenant_id,
                ExternalGroup.provider == provider,
                ExternalGroup.external_group_id == group_id,
            )
        )
        members = result.scalar_one_or_none()
        return sorted(members or [])

    async def list_groups_needing_retry(
        self,
        session: AsyncSession,
        tenant_id: Optional[str] = None,
    ) -> List[Tuple[str, str, str]]:
        stmt = select(
            ExternalGroup.tenant_id, ExternalGroup.provider, ExternalGroup.external_group_id
        ).where(ExternalGroup.needs_retry.is_(True))
        if tenant_id is not None:
            stmt = stmt.where(ExternalGroup.tenant_id == tenant_id)
        result = await session.execute(
            stmt.order_by(
                ExternalGroup.tenant_id, ExternalGroup.provider, ExternalGroup.external_group_id
            )
        )
        return [tuple(row) for row in result.all()]

    async def list_groups_containing_user(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
    ) -> List[ExternalGroup]:
        # member_user_ids is JSON; filter in Python to stay portable
        result = await session.execute(
            select(ExternalGroup).where(ExternalGroup.tenant_id == tenant_id)
        )
        return [g for g in result.scalars().all() if user_id in (g.member_user_ids or [])]

    # Users

    async def remove_user(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        groups: Iterable[ExternalGroup],
    ) -> None:
        """
        Deactivate a user and delete their index rows, identity links and
        flattened memberships

        An inactive user never resolves again, so later recomputes cannot
        re-add them.
        """
        await session.execute(
            update(User)
            .where(User.tenant_id == tenant_id, User.user_id == user_id)
            .values(is_active=False)
        )
        await session.execute(
            delete(ExpandedACLUser).where(
                ExpandedACLUser.tenant_id == tenant_id,
                ExpandedACLUser.user_id == user_id,
            )
        )
        await session.execute(
            delete(IdentityLink).where(
                IdentityLink.tenant_id == tenant_id,
                IdentityLink.user_id == user_id,
            )
        )
        for group in groups:
            result = await session.execute(
                update(ExternalGroup)
                .where(
                    and_(
                        ExternalGroup.id == group.id,
                        ExternalGroup.expansion_version == group.expansion_version,
                    )
                )
                .values(
                    member_user_ids=[uid for uid in group.member_user_ids if uid != user_id],
                    expansion_version=group.expansion_version + 1,
                )
            )
            if result.rowcount != 1:
                raise ConcurrentUpdateException(
                    message="Concurrent group update",
                    details={"tenant_id": tenant_id, "group_id": group.external_group_id},
                )
