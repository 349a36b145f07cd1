"""
Identity Resolver
Maps external principals (users from a source system) to internal user IDs
"""

from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from permsearch.core.logging import get_audit_logger, get_logger
from permsearch.db.dialect import insert_for
from permsearch.db.models import IdentityLink, User
from permsearch.monitoring.metrics import identity_resolutions_total

logger = get_logger(__name__)
audit_logger = get_audit_logger(__name__)

# (provider, external_id) -> resolved user id or None
PrincipalMemo = Dict[Tuple[str, str], Optional[str]]


class IdentityResolver:
    """
    Resolve external principals to internal users

    Resolution order:
    1. Exact identity-link match for (tenant, provider, external_id)
    2. Email match against the tenant's active users; creates an
       unverified identity link for audit
    3. Not found: the principal is dropped from ACL computation

    An unresolved principal never defaults to access.
    """

    async def resolve(
        self,
        session: AsyncSession,
        tenant_id: str,
        provider: str,
        external_id: str,
        memo: Optional[PrincipalMemo] = None,
    ) -> Optional[str]:
        """
        Resolve one external principal

        Args:
            session: Database session (the caller owns the transaction)
            tenant_id: Tenant scope
            provider: Source system the principal comes from
            external_id: Principal ID in the source system
            memo: Optional per-sync-pass memo shared across calls

        Returns:
            Internal user ID, or None if the principal is unknown
        """
        memo_key = (provider, external_id)
        if memo is not None and memo_key in memo:
            return memo[memo_key]

        user_id = await self._resolve_link(session, tenant_id, provider, external_id)
        outcome = "link"
        if user_id is None:
            user_id = await self._resolve_email(session, tenant_id, provider, external_id)
            outcome = "email" if user_id else "not_found"

        identity_resolutions_total.labels(outcome=outcome).inc()
        if user_id is None:
            logger.debug(
                f"Principal not found: tenant={tenant_id} provider={provider} id={external_id}"
            )

        if memo is not None:
            memo[memo_key] = user_id
        return user_id

    async def resolve_many(
        self,
        session: AsyncSession,
        tenant_id: str,
        provider: str,
        external_ids: Iterable[str],
        memo: Optional[PrincipalMemo] = None,
    ) -> Dict[str, Optional[str]]:
        """Resolve several principals; a failure on one does not stop the rest"""
        resolved: Dict[str, Optional[str]] = {}
        for external_id in external_ids:
            try:
                resolved[external_id] = await self.resolve(
                    session, tenant_id, provider, external_id, memo=memo
                )
            except Exception as e:
                logger.warning(
                    f"Resolution failed for {provider}:{external_id} in tenant {tenant_id}: {e}"
                )
                resolved[external_id] = None
        return resolved

    async def _resolve_link(
        self,
        session: AsyncSession,
        tenant_id: str,
        provider: str,
        external_id: str,
    ) -> Optional[str]:
        result = await session.execute(
            select(IdentityLink.user_id)
            .join(
                User,
                (User.tenant_id == IdentityLink.tenant_id)
                & (User.user_id == IdentityLink.user_id),
            )
            .where(
                IdentityLink.tenant_id == tenant_id,
                IdentityLink.provider == provider,
                IdentityLink.external_id == external_id,
                User.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def _resolve_email(
        self,
        session: AsyncSession,
        tenant_id: str,
        provider: str,
        external_id: str,
    ) -> Optional[str]:
        if "@" not in external_id:
            return None

        result = await session.execute(
            select(User.user_id).where(
                User.tenant_id == tenant_id,
                func.lower(User.email) == external_id.lower(),
                User.is_active.is_(True),
            )
        )
        matches = list(result.scalars().all())
        if len(matches) != 1:
            if matches:
                logger.warning(
                    f"Ambiguous email match for {provider}:{external_id} in tenant {tenant_id}; "
                    f"{len(matches)} users share it"
                )
            return None

        user_id = matches[0]
        stmt = insert_for(session, IdentityLink).values(
            tenant_id=tenant_id,
            provider=provider,
            external_id=external_id,
            user_id=user_id,
            verified=False,
        ).on_conflict_do_nothing(index_elements=["tenant_id", "provider", "external_id"])
        await session.execute(stmt)

        audit_logger.info(
            f"Auto-created unverified identity link: tenant={tenant_id} "
            f"provider={provider} external_id={external_id} user_id={user_id}"
        )
        return user_id


# Global identity resolver instance
_identity_resolver: Optional[IdentityResolver] = None


def get_identity_resolver() -> IdentityResolver:
    """Get the global identity resolver instance"""
    global _identity_resolver
    if _identity_resolver is None:
        _identity_resolver = IdentityResolver()
    return _identity_resolver
