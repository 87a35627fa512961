"""
Storage API Routes

Storage usage reporting, manual cloud sync and local cache clearing.
"""

import logging

from fastapi import APIRouter, HTTPException, status

from app.api.dependencies import CurrentUserId, OrchestratorDep, StorageRouterDep
from app.domain.storage import LocalClearResult, MigrationJob, MigrationStatus, StorageInfo
from app.infrastructure.exceptions import MigrationError, ValidationError


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/storage/info", response_model=StorageInfo)
async def get_storage_info(user_id: CurrentUserId, storage: StorageRouterDep):
    """Tier, quotas and local cache usage for the current user."""
    return await storage.storage_info(user_id)


@router.post("/storage/sync", response_model=MigrationJob)
async def sync_local_records(
    user_id: CurrentUserId,
    storage: StorageRouterDep,
    orchestrator: OrchestratorDep,
):
    """
    Re-run the local -> cloud migration.

    Used after a failed automatic migration. Only available on tiers with
    cloud storage.
    """
    entitlement = await storage.entitlement_for(user_id)
    if not entitlement.has_remote_access:
        raise ValidationError(
            "Cloud sync requires a paid plan",
            details={"tier": entitlement.tier.value},
        )

    job = await orchestrator.migrate(user_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Sync already in progress",
        )

    if job.status == MigrationStatus.FAILED:
        raise MigrationError(
            "Some records could not be synced; local data was kept",
            job_id=job.id,
            copied=job.copied,
            failed=job.failed,
        )

    logger.info(f"Manual sync for {user_id}: {job.copied} record(s) copied")
    return job


@router.delete("/storage/local", response_model=LocalClearResult)
async def clear_local_storage(
    user_id: CurrentUserId,
    storage: StorageRouterDep,
    orchestrator: OrchestratorDep,
):
    """
    Delete everything cached locally for the current user.

    Remote data is untouched. Refused while a cloud sync is copying.
    """
    if orchestrator.is_migrating(user_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Sync in progress, try again shortly",
        )

    result = await storage.clear_local(user_id)
    logger.info(f"Local storage cleared on request for {user_id}")
    return result
