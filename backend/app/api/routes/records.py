"""
Record API Routes

CRUD surface over the Storage Router for schedules, sleep entries and
morning routines. The router decides per call whether a record lives in the
local cache or the remote store.
"""

import logging
from typing import Any, Optional

import pydantic
from fastapi import APIRouter, Body, Query, Response, status

from app.api.dependencies import CurrentUserId, StorageRouterDep
from app.domain.records import PersistableRecord, RecordPage, RecordRef, ResourceKind, record_model_for
from app.domain.storage import SaveResult, SaveState
from app.infrastructure.exceptions import ValidationError


logger = logging.getLogger(__name__)

router = APIRouter()


def parse_record(kind: ResourceKind, body: dict[str, Any]) -> PersistableRecord:
    """Validate a request body as a record of `kind`. Store-managed fields are dropped."""
    try:
        record = record_model_for(kind).model_validate(body)
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"Invalid {kind.value} record",
            details={"errors": e.errors(include_url=False, include_context=False)},
            original_error=e,
        )
    return record.model_copy(update={
        "id": None,
        "owner_id": None,
        "created_at": None,
        "updated_at": None,
    })


@router.post("/records/{kind}", response_model=SaveResult, status_code=status.HTTP_201_CREATED)
async def save_record(
    kind: ResourceKind,
    user_id: CurrentUserId,
    storage: StorageRouterDep,
    response: Response,
    body: dict[str, Any] = Body(...),
):
    """
    Save a record.

    Remote outages never fail the request: the record lands in the local
    cache and the result carries a local-scoped ref. 507 means the local
    cache itself is full and the record was not stored.
    """
    record = parse_record(kind, body)
    result = await storage.save(user_id, kind, record)

    if result.state == SaveState.FAILED:
        response.status_code = status.HTTP_507_INSUFFICIENT_STORAGE
    return result


@router.get("/records/{kind}", response_model=RecordPage)
async def list_records(
    kind: ResourceKind,
    user_id: CurrentUserId,
    storage: StorageRouterDep,
    page_size: Optional[int] = Query(default=None, ge=1),
    cursor: Optional[str] = Query(default=None),
):
    """One page of records, newest first. Pass `next_cursor` back unchanged to continue."""
    return await storage.load(user_id, kind, page_size=page_size, cursor=cursor)


@router.post("/records/{kind}/{record_id}/activate", response_model=RecordRef)
async def activate_record(
    kind: ResourceKind,
    record_id: str,
    user_id: CurrentUserId,
    storage: StorageRouterDep,
):
    """Make a schedule or routine the active one."""
    return await storage.set_active(user_id, kind, record_id)


@router.delete("/records/{kind}/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_record(
    kind: ResourceKind,
    record_id: str,
    user_id: CurrentUserId,
    storage: StorageRouterDep,
):
    """Delete a sleep entry."""
    await storage.delete(user_id, kind, record_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
