"""
ACL API Routes
Permission checks for callers and maintenance endpoints for the sync service
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from permsearch.api.dependencies import get_current_principal, require_maintenance_role
from permsearch.core.exceptions import AuthorizationException
from permsearch.core.logging import get_logger
from permsearch.core.security import TokenPrincipal
from permsearch.models.acl import (
    GrantSnapshotRequest,
    InvalidationRequest,
    MembershipSnapshotRequest,
    RecomputeRequest,
)
from permsearch.services.acl import (
    ACLService,
    InvalidationResult,
    RecomputeResult,
    ResourceType,
    get_acl_service,
)
from permsearch.services.sync import SyncService

logger = get_logger(__name__)
router = APIRouter()


def _check_tenant(principal: TokenPrincipal, tenant_id: str) -> None:
    if principal.tenant_id != tenant_id:
        raise AuthorizationException(
            message="Token tenant does not match request tenant",
            details={"tenant_id": tenant_id},
        )


def _queued(task_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"status": "queued", "task_id": task_id},
    )


@router.get("/check")
async def check_access(
    resource_id: str = Query(..., min_length=1),
    resource_type: ResourceType = Query(ResourceType.DOCUMENT),
    principal: TokenPrincipal = Depends(get_current_principal),
    acl: ACLService = Depends(get_acl_service),
) -> Dict[str, Any]:
    """Whether the caller may read a resource; false when undeterminable"""
    allowed = await acl.is_allowed(
        principal.tenant_id, principal.user_id, resource_id, resource_type.value
    )
    return {"resource_id": resource_id, "resource_type": resource_type.value, "allowed": allowed}


@router.post("/invalidate", response_model=InvalidationResult)
async def invalidate(
    request: InvalidationRequest,
    defer: bool = Query(False, description="Queue for a worker instead of applying inline"),
    principal: TokenPrincipal = Depends(require_maintenance_role),
    acl: ACLService = Depends(get_acl_service),
):
    """
    Apply a permission-change event

    Inline calls return once the store is committed and affected cache
    keys are purged.
    """
    event = request.event
    _check_tenant(principal, event.tenant_id)
    logger.info(f"Invalidation requested: {event.event_type} in tenant {event.tenant_id} (defer={defer})")
    if defer:
        from permsearch.tasks.acl_tasks import invalidate_task

        return _queued(invalidate_task.delay(event.model_dump()).id)
    return await acl.invalidate(event)


@router.post("/recompute", response_model=RecomputeResult)
async def recompute(
    request: RecomputeRequest,
    principal: TokenPrincipal = Depends(require_maintenance_role),
    acl: ACLService = Depends(get_acl_service),
):
    """Rebuild one resource's ExpandedACL from current grants"""
    return await acl.recompute_acl(principal.tenant_id, request.resource_id, request.resource_type)


@router.post("/grants", response_model=RecomputeResult)
async def apply_grants(
    request: GrantSnapshotRequest,
    defer: bool = Query(False),
    principal: TokenPrincipal = Depends(require_maintenance_role),
    acl: ACLService = Depends(get_acl_service),
):
    """Store a grant snapshot for one resource and recompute it"""
    if defer:
        from permsearch.tasks.acl_tasks import apply_grant_snapshot_task

        return _queued(
            apply_grant_snapshot_task.delay(
                principal.tenant_id,
                request.resource_id,
                request.resource_type,
                request.source_system,
                [g.model_dump(mode="json") for g in request.grants],
                request.mode,
            ).id
        )
    return await SyncService(acl).apply_grant_snapshot(
        principal.tenant_id,
        request.resource_id,
        request.resource_type,
        request.source_system,
        request.grants,
        mode=request.mode,
    )


@router.post("/memberships", response_model=InvalidationResult)
async def apply_memberships(
    request: MembershipSnapshotRequest,
    defer: bool = Query(False),
    principal: TokenPrincipal = Depends(require_maintenance_role),
    acl: ACLService = Depends(get_acl_service),
):
    """Replace a group's direct members and propagate the change"""
    if defer:
        from permsearch.tasks.acl_tasks import apply_membership_snapshot_task

        return _queued(
            apply_membership_snapshot_task.delay(
                principal.tenant_id,
                request.provider,
                request.group_id,
                [m.model_dump(mode="json") for m in request.members],
            ).id
        )
    return await SyncService(acl).apply_membership_snapshot(
        principal.tenant_id, request.provider, request.group_id, request.members
    )
