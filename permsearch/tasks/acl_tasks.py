"""
ACL Maintenance Tasks
Recompute, invalidation and snapshot application run by Celery workers

Each task runs its coroutine in a fresh event loop with its own database
engine and cache client; neither can be shared across loops.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import TypeAdapter

from permsearch.core.cache import CacheBackend, CacheManager, RedisCache
from permsearch.core.config import settings
from permsearch.core.exceptions import ConcurrentUpdateException, UpstreamUnavailableException
from permsearch.core.logging import get_logger
from permsearch.db.session import close_db, init_db
from permsearch.services.acl import ACLEvent, ACLService, GrantInput, MembershipInput
from permsearch.services.sync import SyncService
from permsearch.tasks.celery_app import celery_app

logger = get_logger(__name__)

RETRYABLE = (UpstreamUnavailableException, ConcurrentUpdateException)

retry_options: Dict[str, Any] = {
    "autoretry_for": RETRYABLE,
    "retry_backoff": True,
    "retry_backoff_max": settings.RECOMPUTE_RETRY_BACKOFF_MAX,
    "retry_jitter": True,
    "max_retries": settings.RECOMPUTE_MAX_RETRIES,
}

event_adapter: TypeAdapter = TypeAdapter(ACLEvent)


def _worker_cache() -> CacheBackend:
    if settings.ACL_CACHE_BACKEND == "redis":
        return RedisCache()
    logger.warning("Worker uses an in-process ACL cache; API processes will not see its invalidations")
    return CacheManager()


@asynccontextmanager
async def worker_acl_service() -> AsyncIterator[ACLService]:
    """ACL service bound to the current event loop"""
    session_maker = await init_db(create_tables=False)
    cache = _worker_cache()
    try:
        yield ACLService(session_maker=session_maker, cache=cache)
    finally:
        await cache.close()
        await close_db()


@celery_app.task(**retry_options)
def recompute_acl_task(tenant_id: str, resource_id: str, resource_type: str) -> Dict[str, Any]:
    """Rebuild one resource's ExpandedACL"""

    async def run() -> Dict[str, Any]:
        async with worker_acl_service() as service:
            result = await service.recompute_acl(tenant_id, resource_id, resource_type)
        return result.model_dump()

    logger.info(f"Recomputing ACL for {resource_type}:{resource_id} in tenant {tenant_id}")
    return asyncio.run(run())


@celery_app.task(**retry_options)
def invalidate_task(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply a permission-change event

    Resources whose recompute failed during a group change are queued as
    separate recompute tasks so they retry independently.
    """
    parsed = event_adapter.validate_python(event)

    async def run() -> Dict[str, Any]:
        async with worker_acl_service() as service:
            result = await service.invalidate(parsed)
        return result.model_dump()

    result = asyncio.run(run())
    for ref in result["failures"]:
        resource_type, resource_id = ref.split(":", 1)
        recompute_acl_task.delay(result["tenant_id"], resource_id, resource_type)
    if result["failures"]:
        logger.warning(
            f"Queued {len(result['failures'])} recomputes after {result['event_type']} "
            f"in tenant {result['tenant_id']}"
        )
    return result


@celery_app.task(**retry_options)
def apply_grant_snapshot_task(
    tenant_id: str,
    resource_id: str,
    resource_type: str,
    source_system: str,
    grants: List[Dict[str, Any]],
    mode: str = "replace",
) -> Dict[str, Any]:
    """Store a connector's grant snapshot and recompute the resource"""
    parsed = [GrantInput.model_validate(g) for g in grants]

    async def run() -> Dict[str, Any]:
        async with worker_acl_service() as service:
            result = await SyncService(service).apply_grant_snapshot(
                tenant_id, resource_id, resource_type, source_system, parsed, mode=mode
            )
        return result.model_dump()

    return asyncio.run(run())


@celery_app.task(**retry_options)
def apply_membership_snapshot_task(
    tenant_id: str,
    provider: str,
    group_id: str,
    members: List[Dict[str, Any]],
) -> Dict[str, Any]:
    """Store a connector's membership snapshot and propagate it"""
    parsed = [MembershipInput.model_validate(m) for m in members]

    async def run() -> Dict[str, Any]:
        async with worker_acl_service() as service:
            result = await SyncService(service).apply_membership_snapshot(
                tenant_id, provider, group_id, parsed
            )
        return result.model_dump()

    return asyncio.run(run())


@celery_app.task
def retry_failed_groups_task(tenant_id: Optional[str] = None) -> int:
    """Periodic re-expansion of groups whose last sync was partial"""

    async def run() -> int:
        async with worker_acl_service() as service:
            results = await SyncService(service).retry_failed_groups(tenant_id)
        return len(results)

    return asyncio.run(run())
