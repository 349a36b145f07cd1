"""
ACL Service
Permission lookups, ExpandedACL recomputation and cache invalidation

Write protocol for every change that affects a cached key:
1. fence the keys (values dropped, read-through write-back disabled)
2. commit the new source-of-truth rows
3. release the keys (values dropped again, generation advanced)

A reader that started before step 1 cannot write back because the
generation moved; a reader during steps 1-3 never writes back; a reader
after step 3 sees committed data. A stale permissive entry therefore
cannot survive an acknowledged invalidation.
"""

import time
from contextlib import AsyncExitStack
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Sequence,
    Set,
    TypeVar,
)

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from permsearch.core.cache import CacheBackend, get_cache_backend
from permsearch.core.config import settings
from permsearch.core.exceptions import CacheInconsistentException, ConcurrentUpdateException
from permsearch.core.logging import get_audit_logger, get_logger
from permsearch.db.session import get_session_maker
from permsearch.monitoring.metrics import (
    acl_cache_lookups_total,
    acl_fail_closed_total,
    acl_recompute_duration_seconds,
    acl_recompute_total,
)
from permsearch.services.acl.keys import (
    group_members_key,
    resource_users_key,
    user_resources_key,
)
from permsearch.services.acl.locks import KeyedLocks
from permsearch.services.acl.models import (
    GroupMembershipChanged,
    InvalidationResult,
    PrincipalType,
    RecomputeResult,
    ResourcePermissionChanged,
    ResourceRef,
    UserRemovedFromTenant,
)
from permsearch.services.acl.store import ACLStore
from permsearch.services.groups import ExpansionPass, GroupExpander, get_group_expander
from permsearch.services.identity import IdentityResolver, get_identity_resolver

logger = get_logger(__name__)
audit_logger = get_audit_logger(__name__)

T = TypeVar("T")


class ACLService:
    """
    ACL Store & Cache

    Reads go through the cache; writes go to the store under a fence.
    Checks that gate visibility (`is_allowed`, `filter_allowed`,
    `allowed_refs_or_none`) deny on any cache or store failure.
    """

    # Retries after losing the optimistic version check
    CAS_RETRIES = 1

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker] = None,
        cache: Optional[CacheBackend] = None,
        store: Optional[ACLStore] = None,
        expander: Optional[GroupExpander] = None,
        resolver: Optional[IdentityResolver] = None,
        cache_ttl: Optional[int] = None,
    ):
        self._session_maker = session_maker
        self.cache = cache or get_cache_backend()
        self.store = store or ACLStore()
        self.expander = expander or get_group_expander()
        self.resolver = resolver or get_identity_resolver()
        self.cache_ttl = cache_ttl or settings.ACL_CACHE_TTL_SECONDS
        self._locks = KeyedLocks()

    @property
    def session_maker(self) -> async_sessionmaker:
        if self._session_maker is None:
            self._session_maker = get_session_maker()
        return self._session_maker

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _read_through(
        self,
        key: str,
        shape: str,
        loader: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        lookup = await self.cache.lookup(key)
        if lookup.hit:
            acl_cache_lookups_total.labels(shape=shape, result="hit").inc()
            return lookup.value

        acl_cache_lookups_total.labels(
            shape=shape, result="fenced" if lookup.fenced else "miss"
        ).inc()
        async with self.session_maker() as session:
            value = await loader(session)

        if not lookup.fenced:
            await self.cache.set_if_generation(key, value, lookup.generation, self.cache_ttl)
        return value

    async def get_allowed_resources(self, tenant_id: str, user_id: str) -> Set[ResourceRef]:
        """
        Resources a user may read

        Raises on cache/store failure; visibility checks use
        `allowed_refs_or_none` instead.
        """

        async def load(session: AsyncSession) -> List[List[str]]:
            refs = await self.store.get_allowed_resources(session, tenant_id, user_id)
            return [ref.to_list() for ref in refs]

        cached = await self._read_through(
            user_resources_key(tenant_id, user_id), "user_resources", load
        )
        try:
            return {ResourceRef(resource_type, resource_id) for resource_type, resource_id in cached}
        except (TypeError, ValueError) as e:
            raise CacheInconsistentException(
                message="Malformed allowed-resources entry",
                details={"tenant_id": tenant_id},
            ) from e

    async def get_allowed_users(
        self,
        tenant_id: str,
        resource_id: str,
        resource_type: str,
    ) -> Set[str]:
        """Users allowed to read a resource"""

        async def load(session: AsyncSession) -> List[str]:
            return await self.store.get_allowed_users(
                session, tenant_id, resource_type, resource_id
            )

        cached = await self._read_through(
            resource_users_key(tenant_id, resource_type, resource_id), "resource_users", load
        )
        return set(cached)

    async def get_group_members(self, tenant_id: str, provider: str, group_id: str) -> Set[str]:
        """Flattened members of an external group, as last expanded"""

        async def load(session: AsyncSession) -> List[str]:
            return await self.store.get_group_members(session, tenant_id, provider, group_id)

        cached = await self._read_through(
            group_members_key(tenant_id, provider, group_id), "group_members", load
        )
        return set(cached)

    async def is_allowed(
        self,
        tenant_id: str,
        user_id: str,
        resource_id: str,
        resource_type: str,
    ) -> bool:
        """
        Check a single (user, resource) pair

        Answers from whichever cache shape is warm; otherwise reads the
        resource's user set through the cache. Any failure denies.
        """
        try:
            user_lookup = await self.cache.lookup(user_resources_key(tenant_id, user_id))
            if user_lookup.hit:
                acl_cache_lookups_total.labels(shape="user_resources", result="hit").inc()
                return [resource_type, resource_id] in user_lookup.value

            resource_lookup = await self.cache.lookup(
                resource_users_key(tenant_id, resource_type, resource_id)
            )
            if resource_lookup.hit:
                acl_cache_lookups_total.labels(shape="resource_users", result="hit").inc()
                return user_id in resource_lookup.value

            allowed = await self.get_allowed_users(tenant_id, resource_id, resource_type)
            return user_id in allowed
        except Exception as e:
            self._fail_closed("is_allowed", tenant_id, user_id, e)
            return False

    async def allowed_refs_or_none(self, tenant_id: str, user_id: str) -> Optional[Set[ResourceRef]]:
        """Allowed resources, or None when they cannot be determined (deny all)"""
        try:
            return await self.get_allowed_resources(tenant_id, user_id)
        except Exception as e:
            self._fail_closed("allowed_resources", tenant_id, user_id, e)
            return None

    async def filter_allowed(
        self,
        tenant_id: str,
        user_id: str,
        items: Sequence[T],
        ref_of: Callable[[T], ResourceRef],
    ) -> List[T]:
        """Keep the items the user may read, preserving order"""
        allowed = await self.allowed_refs_or_none(tenant_id, user_id)
        if not allowed:
            return []
        return [item for item in items if ref_of(item) in allowed]

    def _fail_closed(self, operation: str, tenant_id: str, user_id: str, error: Exception) -> None:
        acl_fail_closed_total.labels(operation=operation).inc()
        logger.error(f"ACL {operation} failed for tenant {tenant_id}; denying: {error}")
        audit_logger.warning(
            f"Fail-closed denial: operation={operation} tenant={tenant_id} user={user_id}"
        )

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    async def recompute_acl(
        self,
        tenant_id: str,
        resource_id: str,
        resource_type: str,
        expansion_pass: Optional[ExpansionPass] = None,
    ) -> RecomputeResult:
        """
        Rebuild the ExpandedACL of one resource from current grants

        Serialized per resource in-process; the version compare-and-swap
        covers writers in other processes. Losing the CAS retries once.

        Raises:
            ConcurrentUpdateException: If the retry also loses
        """
        start_time = time.time()
        attempt = 0
        async with self._locks.hold((tenant_id, resource_type, resource_id)):
            while True:
                try:
                    result = await self._recompute_once(
                        tenant_id, resource_id, resource_type, expansion_pass
                    )
                    break
                except ConcurrentUpdateException:
                    attempt += 1
                    if attempt > self.CAS_RETRIES:
                        acl_recompute_total.labels(status="conflict").inc()
                        raise
                    logger.warning(
                        f"ExpandedACL version moved for {resource_type}:{resource_id} "
                        f"in tenant {tenant_id}; retrying"
                    )
                except Exception:
                    acl_recompute_total.labels(status="error").inc()
                    raise

        acl_recompute_total.labels(status="success").inc()
        acl_recompute_duration_seconds.observe(time.time() - start_time)
        return result

    async def _recompute_once(
        self,
        tenant_id: str,
        resource_id: str,
        resource_type: str,
        expansion_pass: Optional[ExpansionPass],
    ) -> RecomputeResult:
        expansion_pass = expansion_pass or ExpansionPass()

        async with self.session_maker() as session:
            current = await self.store.get_expanded_acl(
                session, tenant_id, resource_type, resource_id
            )
            expected_version = current.expansion_version if current else 0
            old_users: Set[str] = set(current.allowed_user_ids) if current else set()

            grants = await self.store.list_active_grants(
                session, tenant_id, resource_type, resource_id
            )

            users: Set[str] = set()
            source_groups: Set[str] = set()
            incomplete: List[str] = []
            group_keys: Set[str] = set()

            direct: Dict[str, List[str]] = {}
            for grant in grants:
                if grant.principal_type == PrincipalType.USER.value:
                    direct.setdefault(grant.source_system, []).append(grant.principal_id)
                    continue

                expansion = await self.expander.expand_detailed(
                    session,
                    tenant_id,
                    grant.source_system,
                    grant.principal_id,
                    expansion_pass=expansion_pass,
                )
                users |= expansion.user_ids
                source_groups.add(f"{grant.source_system}:{grant.principal_id}")
                group_keys.update(
                    group_members_key(tenant_id, grant.source_system, group_id)
                    for group_id in expansion.visited_groups
                )
                if not expansion.complete:
                    incomplete.append(grant.principal_id)

            for provider, external_ids in direct.items():
                resolved = await self.resolver.resolve_many(
                    session, tenant_id, provider, external_ids, memo=expansion_pass.principals
                )
                users.update(uid for uid in resolved.values() if uid is not None)

            keys = [resource_users_key(tenant_id, resource_type, resource_id)]
            keys += [user_resources_key(tenant_id, uid) for uid in sorted(old_users | users)]
            keys += sorted(group_keys)

            await self.cache.fence(keys)
            try:
                new_version = await self.store.write_expanded_acl(
                    session,
                    tenant_id,
                    resource_type,
                    resource_id,
                    users,
                    source_groups,
                    expected_version=expected_version,
                    exists=current is not None,
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await self._release(keys)

        added = sorted(users - old_users)
        removed = sorted(old_users - users)
        audit_logger.info(
            f"ExpandedACL committed: tenant={tenant_id} resource={resource_type}:{resource_id} "
            f"version={new_version} added={added} removed={removed}"
        )
        if incomplete:
            logger.warning(
                f"ExpandedACL for {resource_type}:{resource_id} built from incomplete "
                f"group expansions: {sorted(incomplete)}"
            )

        return RecomputeResult(
            tenant_id=tenant_id,
            resource_id=resource_id,
            resource_type=resource_type,
            expansion_version=new_version,
            allowed_user_ids=sorted(users),
            added_user_ids=added,
            removed_user_ids=removed,
            source_groups=sorted(source_groups),
            incomplete_groups=sorted(incomplete),
        )

    async def _release(self, keys: List[str]) -> None:
        try:
            await self.cache.release(keys)
        except Exception as e:
            # Fenced keys keep bypassing the cache until the fence TTL lapses
            logger.error(f"Failed to release {len(keys)} ACL cache keys: {e}")

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    async def invalidate(self, event: Any) -> InvalidationResult:
        """
        Apply a permission-change event

        Returns once the store is committed and every affected cache key
        is purged.
        """
        if isinstance(event, ResourcePermissionChanged):
            return await self._on_resource_changed(event)
        if isinstance(event, GroupMembershipChanged):
            return await self._on_group_changed(event)
        if isinstance(event, UserRemovedFromTenant):
            return await self._on_user_removed(event)
        raise TypeError(f"Unsupported ACL event: {type(event).__name__}")

    async def _on_resource_changed(self, event: ResourcePermissionChanged) -> InvalidationResult:
        result = await self.recompute_acl(event.tenant_id, event.resource_id, event.resource_type)
        return InvalidationResult(
            event_type=event.event_type,
            tenant_id=event.tenant_id,
            resources_recomputed=[f"{event.resource_type}:{event.resource_id}"],
            keys_invalidated=1 + len(set(result.added_user_ids) | set(result.removed_user_ids)),
        )

    async def _on_group_changed(self, event: GroupMembershipChanged) -> InvalidationResult:
        tenant_id, provider = event.tenant_id, event.provider
        expansion_pass = ExpansionPass()

        async with self.session_maker() as session:
            groups = await self.store.find_ancestor_groups(
                session, tenant_id, provider, event.group_id
            )
            resources = await self.store.find_resources_granted_to_groups(
                session, tenant_id, provider, groups
            )

            group_keys = [group_members_key(tenant_id, provider, g) for g in sorted(groups)]
            await self.cache.fence(group_keys)
            try:
                await self.expander.expand_many(
                    session, tenant_id, provider, groups, expansion_pass=expansion_pass
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await self._release(group_keys)

        result = InvalidationResult(
            event_type=event.event_type,
            tenant_id=tenant_id,
            groups_refreshed=sorted(groups),
            keys_invalidated=len(group_keys),
        )

        for ref in resources:
            try:
                recomputed = await self.recompute_acl(
                    tenant_id, ref.resource_id, ref.resource_type, expansion_pass=expansion_pass
                )
            except Exception as e:
                logger.error(f"Recompute failed for {ref} in tenant {tenant_id}: {e}")
                result.failures[str(ref)] = str(e)
                continue
            result.resources_recomputed.append(str(ref))
            result.keys_invalidated += 1 + len(
                set(recomputed.added_user_ids) | set(recomputed.removed_user_ids)
            )

        logger.info(
            f"Group {provider}:{event.group_id} changed in tenant {tenant_id}: "
            f"{len(groups)} groups refreshed, {len(result.resources_recomputed)} resources "
            f"recomputed, {len(result.failures)} failures"
        )
        return result

    async def _on_user_removed(self, event: UserRemovedFromTenant) -> InvalidationResult:
        tenant_id, user_id = event.tenant_id, event.user_id

        attempt = 0
        while True:
            try:
                return await self._remove_user_once(tenant_id, user_id, event.event_type)
            except ConcurrentUpdateException:
                attempt += 1
                if attempt > self.CAS_RETRIES:
                    raise
                logger.warning(
                    f"Concurrent update while removing a user from tenant {tenant_id}; retrying"
                )

    async def _remove_user_once(
        self,
        tenant_id: str,
        user_id: str,
        event_type: str,
    ) -> InvalidationResult:
        async with self.session_maker() as session:
            refs = await self.store.get_allowed_resources(session, tenant_id, user_id)
            groups = await self.store.list_groups_containing_user(session, tenant_id, user_id)

        async with AsyncExitStack() as stack:
            for ref in sorted(refs):
                await stack.enter_async_context(
                    self._locks.hold((tenant_id, ref.resource_type, ref.resource_id))
                )

            keys = [user_resources_key(tenant_id, user_id)]
            keys += [
                resource_users_key(tenant_id, ref.resource_type, ref.resource_id) for ref in refs
            ]
            keys += [
                group_members_key(tenant_id, g.provider, g.external_group_id) for g in groups
            ]

            async with self.session_maker() as session:
                await self.cache.fence(keys)
                try:
                    current = await self.store.get_allowed_resources(session, tenant_id, user_id)
                    if set(current) != set(refs):
                        raise ConcurrentUpdateException(
                            message="Allowed resources changed during user removal",
                            details={"tenant_id": tenant_id},
                        )
                    for ref in refs:
                        await self.store.remove_user_from_acl(session, tenant_id, ref, user_id)
                    await self.store.remove_user(session, tenant_id, user_id, groups)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
                finally:
                    await self._release(keys)

        audit_logger.info(
            f"User removed from tenant ACLs: tenant={tenant_id} user={user_id} "
            f"resources={len(refs)} groups={len(groups)}"
        )
        return InvalidationResult(
            event_type=event_type,
            tenant_id=tenant_id,
            resources_recomputed=[str(ref) for ref in refs],
            groups_refreshed=sorted(g.external_group_id for g in groups),
            keys_invalidated=len(keys),
        )

    async def invalidate_keys(self, keys: Iterable[str]) -> None:
        """Purge arbitrary ACL keys (operator use)"""
        await self.cache.invalidate(keys)


# Global ACL service instance
_acl_service: Optional[ACLService] = None


def get_acl_service() -> ACLService:
    """Get the global ACL service instance"""
    global _acl_service
    if _acl_service is None:
        _acl_service = ACLService()
    return _acl_service
