"""
Preferences API Routes

Theme, notification and timezone settings. Stored in the user's remote
profile on cloud tiers and in the local cache otherwise.
"""

import logging

from fastapi import APIRouter, Response, status

from app.api.dependencies import CurrentUserId, StorageRouterDep
from app.domain.records import UserPreferences
from app.domain.storage import PreferencesResult, SaveState


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/preferences", response_model=UserPreferences)
async def get_preferences(user_id: CurrentUserId, storage: StorageRouterDep):
    """Current preferences. Fields never saved come back as null."""
    return await storage.load_preferences(user_id)


@router.put("/preferences", response_model=PreferencesResult)
async def update_preferences(
    update: UserPreferences,
    user_id: CurrentUserId,
    storage: StorageRouterDep,
    response: Response,
):
    """
    Merge preference changes.

    Omitted or null fields keep their stored value. 507 means the local
    cache is full and nothing was saved.
    """
    result = await storage.save_preferences(user_id, update)

    if result.state == SaveState.FAILED:
        response.status_code = status.HTTP_507_INSUFFICIENT_STORAGE
    return result
