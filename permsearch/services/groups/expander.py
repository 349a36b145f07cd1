"""
Group Expander
Flattens nested external groups into sets of internal user IDs
"""

from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from permsearch.core.exceptions import CycleDetectedException
from permsearch.core.logging import get_logger
from permsearch.db.base import utcnow
from permsearch.db.dialect import insert_for
from permsearch.db.models import ExternalGroup
from permsearch.monitoring.metrics import group_expansion_events_total
from permsearch.services.groups.models import (
    CycleWarning,
    ExpansionPass,
    ExpansionResult,
)
from permsearch.services.groups.source import (
    DatabaseMembershipSource,
    MembershipSource,
)
from permsearch.services.identity.resolver import IdentityResolver, get_identity_resolver

logger = get_logger(__name__)


class GroupExpander:
    """
    Breadth-first group expansion

    Every call keeps its own visited set, so a cyclic membership graph
    terminates. Reaching a group a second time is logged and skipped; the
    group's members are already part of the result.

    Features:
    - Direct user members resolved through the identity resolver
    - Sub-group closures memoized per sync pass
    - A failed fetch drops only that group's subtree; the failure is
      recorded on the group's ExternalGroup row for retry
    """

    def __init__(
        self,
        resolver: Optional[IdentityResolver] = None,
        source: Optional[MembershipSource] = None,
    ):
        self.resolver = resolver or get_identity_resolver()
        self.source = source or DatabaseMembershipSource()

    async def expand(
        self,
        session: AsyncSession,
        tenant_id: str,
        provider: str,
        group_id: str,
        expansion_pass: Optional[ExpansionPass] = None,
    ) -> Set[str]:
        """
        Expand a group into the set of internal user IDs it contains

        Args:
            session: Database session
            tenant_id: Tenant scope
            provider: Source system of the group
            group_id: External group ID
            expansion_pass: Optional per-sync-pass memo

        Returns:
            Deduplicated set of internal user IDs
        """
        result = await self.expand_detailed(
            session, tenant_id, provider, group_id, expansion_pass=expansion_pass
        )
        return set(result.user_ids)

    async def expand_detailed(
        self,
        session: AsyncSession,
        tenant_id: str,
        provider: str,
        group_id: str,
        expansion_pass: Optional[ExpansionPass] = None,
        persist: bool = True,
    ) -> ExpansionResult:
        """
        Expand a group and report visited groups, cycles and fetch errors

        Each group reached in this call gets its own flattened result,
        persisted to ExternalGroup when `persist` is set.
        """
        expansion_pass = expansion_pass or ExpansionPass()
        memoized = expansion_pass.closure(provider, group_id)
        if memoized is not None:
            group_expansion_events_total.labels(event="memo_hit").inc()
            return memoized

        subgroups: Dict[str, List[str]] = {}
        direct_users: Dict[str, Set[str]] = {}
        known: Dict[str, ExpansionResult] = {}
        errors: Dict[str, str] = {}
        cycles: List[CycleWarning] = []

        visited: Set[str] = {group_id}
        queue: Deque[str] = deque([group_id])

        while queue:
            current = queue.popleft()

            if current != group_id:
                cached = expansion_pass.closure(provider, current)
                if cached is not None:
                    group_expansion_events_total.labels(event="memo_hit").inc()
                    known[current] = cached
                    continue

            try:
                edges = await self.source.fetch_members(session, tenant_id, provider, current)
            except Exception as e:
                logger.error(
                    f"Membership fetch failed for {provider}:{current} in tenant {tenant_id}: {e}"
                )
                group_expansion_events_total.labels(event="fetch_error").inc()
                errors[current] = str(e)
                continue

            edges = sorted(edges, key=lambda edge: (edge.member_type, edge.member_id))
            user_ids = [edge.member_id for edge in edges if edge.member_type == "user"]
            resolved = await self.resolver.resolve_many(
                session, tenant_id, provider, user_ids, memo=expansion_pass.principals
            )
            direct_users[current] = {uid for uid in resolved.values() if uid is not None}

            subgroups[current] = []
            for edge in edges:
                if edge.member_type != "group":
                    continue
                child = edge.member_id
                subgroups[current].append(child)
                if child in visited:
                    warning = CycleDetectedException(group_id=child, via_group_id=current)
                    logger.warning(f"{warning.message} (tenant {tenant_id}, provider {provider})")
                    group_expansion_events_total.labels(event="revisit").inc()
                    cycles.append(CycleWarning(group_id=child, via_group_id=current))
                    continue
                visited.add(child)
                queue.append(child)

        results: Dict[str, ExpansionResult] = {}
        for reached in sorted(visited):
            if reached in known:
                continue
            result = self._flatten(
                provider, reached, subgroups, direct_users, known, errors
            )
            result.cycles = [c for c in cycles if c.group_id in result.visited_groups]
            results[reached] = result
            expansion_pass.remember(result)

        if persist:
            await self._persist(session, tenant_id, provider, results, errors)

        root = results[group_id]
        logger.debug(
            f"Expanded {provider}:{group_id} in tenant {tenant_id}: "
            f"{len(root.user_ids)} users, {len(root.visited_groups)} groups, "
            f"{len(root.errors)} errors"
        )
        return root

    def _flatten(
        self,
        provider: str,
        group_id: str,
        subgroups: Dict[str, List[str]],
        direct_users: Dict[str, Set[str]],
        known: Dict[str, ExpansionResult],
        errors: Dict[str, str],
    ) -> ExpansionResult:
        """Closure of one group over the membership graph fetched in this call"""
        result = ExpansionResult(group_id=group_id, provider=provider)
        seen: Set[str] = {group_id}
        queue: Deque[str] = deque([group_id])

        while queue:
            current = queue.popleft()
            result.visited_groups.add(current)

            if current in known:
                memo = known[current]
                result.user_ids |= memo.user_ids
                result.visited_groups |= memo.visited_groups
                continue
            if current in errors:
                result.errors[current] = errors[current]
                continue

            result.user_ids |= direct_users.get(current, set())
            for child in subgroups.get(current, []):
                if child not in seen:
                    seen.add(child)
                    queue.append(child)

        return result

    async def _persist(
        self,
        session: AsyncSession,
        tenant_id: str,
        provider: str,
        results: Dict[str, ExpansionResult],
        errors: Dict[str, str],
    ) -> None:
        now = utcnow()
        table = ExternalGroup.__table__

        for group_id, result in results.items():
            if group_id in errors:
                # Keep the last good member list; only flag the row
                stmt = insert_for(session, ExternalGroup).values(
                    tenant_id=tenant_id,
                    provider=provider,
                    external_group_id=group_id,
                    member_user_ids=[],
                    expansion_version=0,
                    sync_error=errors[group_id],
                    needs_retry=True,
                ).on_conflict_do_update(
                    index_elements=["tenant_id", "provider", "external_group_id"],
                    set_={"sync_error": errors[group_id], "needs_retry": True},
                )
                await session.execute(stmt)
                continue

            sync_error = None
            if not result.complete:
                sync_error = "Incomplete expansion: " + ", ".join(sorted(result.errors))

            members = sorted(result.user_ids)
            stmt = insert_for(session, ExternalGroup).values(
                tenant_id=tenant_id,
                provider=provider,
                external_group_id=group_id,
                member_user_ids=members,
                expansion_version=1,
                last_synced_at=now,
                sync_error=sync_error,
                needs_retry=not result.complete,
            ).on_conflict_do_update(
                index_elements=["tenant_id", "provider", "external_group_id"],
                set_={
                    "member_user_ids": members,
                    "expansion_version": table.c.expansion_version + 1,
                    "last_synced_at": now,
                    "sync_error": sync_error,
                    "needs_retry": not result.complete,
                },
            )
            await session.execute(stmt)

    async def expand_many(
        self,
        session: AsyncSession,
        tenant_id: str,
        provider: str,
        group_ids: Iterable[str],
        expansion_pass: Optional[ExpansionPass] = None,
    ) -> Dict[str, ExpansionResult]:
        """Expand several groups sharing one sync pass"""
        expansion_pass = expansion_pass or ExpansionPass()
        return {
            group_id: await self.expand_detailed(
                session, tenant_id, provider, group_id, expansion_pass=expansion_pass
            )
            for group_id in sorted(set(group_ids))
        }


# Global group expander instance
_group_expander: Optional[GroupExpander] = None


def get_group_expander() -> GroupExpander:
    """Get the global group expander instance"""
    global _group_expander
    if _group_expander is None:
        _group_expander = GroupExpander()
    return _group_expander
