"""
Sync Service
Applies connector snapshots of grants and group memberships and drives
the resulting recompute and invalidation
"""

from typing import Iterable, List, Literal, Optional

from permsearch.core.logging import get_logger
from permsearch.services.acl import (
    ACLService,
    ACLStore,
    GrantInput,
    GroupMembershipChanged,
    InvalidationResult,
    MembershipInput,
    RecomputeResult,
    get_acl_service,
)

logger = get_logger(__name__)

SnapshotMode = Literal["replace", "append"]


class SyncService:
    """
    Snapshot application for the maintenance layer

    The snapshot rows are committed first; the acknowledgement returns
    only after the dependent ExpandedACLs are rebuilt and their cache
    keys purged.
    """

    def __init__(self, acl_service: Optional[ACLService] = None):
        self.acl_service = acl_service or get_acl_service()

    @property
    def store(self) -> ACLStore:
        return self.acl_service.store

    async def apply_grant_snapshot(
        self,
        tenant_id: str,
        resource_id: str,
        resource_type: str,
        source_system: str,
        grants: Iterable[GrantInput],
        mode: SnapshotMode = "replace",
    ) -> RecomputeResult:
        """
        Store the grants one source system holds on a resource

        Args:
            tenant_id: Tenant scope
            resource_id: Resource the grants apply to
            resource_type: document or email
            source_system: Connector the snapshot came from
            grants: Grant rows in the snapshot
            mode: "replace" deletes rows the snapshot no longer lists;
                "append" keeps them

        Returns:
            RecomputeResult of the resource's ExpandedACL
        """
        grants = list(grants)
        async with self.acl_service.session_maker() as session:
            if mode == "append":
                existing = await self.store.list_active_grants(
                    session, tenant_id, resource_type, resource_id
                )
                merged = {
                    (g.principal_type, g.principal_id): g
                    for g in (
                        GrantInput(
                            principal_id=e.principal_id,
                            principal_type=e.principal_type,
                            expires_at=e.expires_at,
                        )
                        for e in existing
                        if e.source_system == source_system
                    )
                }
                merged.update({(g.principal_type, g.principal_id): g for g in grants})
                grants = list(merged.values())

            try:
                count = await self.store.replace_grants(
                    session, tenant_id, resource_type, resource_id, source_system, grants
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.info(
            f"Applied {count} grants from {source_system} to {resource_type}:{resource_id} "
            f"in tenant {tenant_id} (mode={mode})"
        )
        return await self.acl_service.recompute_acl(tenant_id, resource_id, resource_type)

    async def apply_membership_snapshot(
        self,
        tenant_id: str,
        provider: str,
        group_id: str,
        members: Iterable[MembershipInput],
    ) -> InvalidationResult:
        """Replace a group's direct members and propagate the change"""
        async with self.acl_service.session_maker() as session:
            try:
                count = await self.store.replace_group_members(
                    session, tenant_id, provider, group_id, members
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.info(f"Applied {count} members to group {provider}:{group_id} in tenant {tenant_id}")
        return await self.acl_service.invalidate(
            GroupMembershipChanged(tenant_id=tenant_id, provider=provider, group_id=group_id)
        )

    async def retry_failed_groups(self, tenant_id: Optional[str] = None) -> List[InvalidationResult]:
        """Re-run expansion for groups whose last sync hit fetch errors"""
        async with self.acl_service.session_maker() as session:
            pending = await self.store.list_groups_needing_retry(session, tenant_id)

        results = []
        for group_tenant, provider, group_id in pending:
            try:
                result = await self.acl_service.invalidate(
                    GroupMembershipChanged(
                        tenant_id=group_tenant, provider=provider, group_id=group_id
                    )
                )
            except Exception as e:
                logger.error(
                    f"Retry of group {provider}:{group_id} in tenant {group_tenant} failed: {e}"
                )
                continue
            results.append(result)

        if pending:
            logger.info(f"Retried {len(results)}/{len(pending)} groups needing retry")
        return results

