"""
Remote Store Adapter

Owner-scoped, cursor-paginated client for the shared document store
(`user_documents` in Supabase Postgres) and the per-user profile that holds
preferences (`user_profiles`).

Production features:
- Append-only writes with adapter-assigned timestamps
- Keyset pagination, newest first, behind an opaque cursor
- Exponential backoff retry for transient failures
- Transient and permission-denied failures returned as typed `Degraded`
  results instead of raised exceptions
"""

import asyncio
import base64
import binascii
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError

from app.config.settings import Settings
from app.domain.records import (
    PersistableRecord,
    RecordPage,
    ResourceKind,
    UserPreferences,
    record_model_for,
)
from app.domain.storage import Degraded, RemoteFailure, RemoteOk, RemoteResult
from app.infrastructure.db.database import DatabaseManager
from app.infrastructure.db.models import UserDocumentModel, UserProfileModel, as_utc, utcnow
from app.infrastructure.exceptions import (
    NotFoundError,
    RemoteStoreError,
    ValidationError,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE for insufficient_privilege (row level security, revoked grants)
PERMISSION_DENIED_SQLSTATE = "42501"

PROTECTED_FIELDS = {"id", "owner_id", "created_at", "updated_at"}


# =============================================================================
# Cursor Encoding
# =============================================================================

def encode_cursor(created_at: datetime, document_id: UUID) -> str:
    """Opaque continuation token for keyset pagination."""
    raw = json.dumps({"c": as_utc(created_at).isoformat(), "i": str(document_id)})
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_cursor(cursor: str) -> tuple[datetime, UUID]:
    """Inverse of encode_cursor. Raises ValidationError on tampered input."""
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode()).decode())
        return as_utc(datetime.fromisoformat(data["c"])), UUID(data["i"])
    except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
        raise ValidationError("Invalid pagination cursor", details={"cursor": cursor}) from e


# =============================================================================
# Failure Classification
# =============================================================================

def _sqlstate(error: Exception) -> Optional[str]:
    orig = getattr(error, "orig", None)
    for source in (orig, getattr(orig, "__cause__", None), error):
        code = getattr(source, "sqlstate", None) or getattr(source, "pgcode", None)
        if code:
            return str(code)
    return None


def is_permission_denied(error: Exception) -> bool:
    if _sqlstate(error) == PERMISSION_DENIED_SQLSTATE:
        return True
    return "permission denied" in str(error).lower()


def is_transient(error: Exception) -> bool:
    if isinstance(error, (OperationalError, InterfaceError, TimeoutError, ConnectionError)):
        return True
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    return isinstance(error, OSError)


class RemoteStoreAdapter:
    """
    Document store client used by the Storage Router and Migration Orchestrator.

    Every statement filters by owner, so no cross-user visibility is possible.
    Degraded results mean "could not complete right now"; anything else that
    goes wrong in the database is raised as RemoteStoreError.
    """

    def __init__(
        self,
        db: DatabaseManager,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 10.0,
    ):
        self._db = db
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay

    @classmethod
    def from_settings(cls, db: DatabaseManager, settings: Settings) -> "RemoteStoreAdapter":
        return cls(
            db,
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

    # =========================================================================
    # Operations
    # =========================================================================

    async def write(
        self,
        owner_id: str,
        kind: ResourceKind,
        record: PersistableRecord,
    ) -> RemoteResult[str]:
        """Create a new document. Never replaces an existing one."""

        async def create() -> str:
            async with self._db.session() as session:
                document = UserDocumentModel(
                    owner_id=owner_id,
                    kind=kind.value,
                    active=bool(getattr(record, "active", False)) if kind.supports_active else None,
                    payload=record.payload(),
                )
                session.add(document)
                await session.flush()
                return str(document.id)

        return await self._with_retry("write", create)

    async def list(
        self,
        owner_id: str,
        kind: ResourceKind,
        page_size: int,
        cursor: Optional[str] = None,
    ) -> RemoteResult[RecordPage]:
        """One page of documents, newest first. `next_cursor` is None on the last page."""
        if page_size < 1:
            raise ValidationError("page_size must be positive", details={"page_size": page_size})

        position = decode_cursor(cursor) if cursor else None

        async def fetch() -> RecordPage:
            async with self._db.session() as session:
                stmt = (
                    select(UserDocumentModel)
                    .where(
                        UserDocumentModel.owner_id == owner_id,
                        UserDocumentModel.kind == kind.value,
                    )
                    .order_by(UserDocumentModel.created_at.desc(), UserDocumentModel.id.desc())
                    .limit(page_size + 1)
                )
                if position:
                    created_at, document_id = position
                    stmt = stmt.where(
                        or_(
                            UserDocumentModel.created_at < created_at,
                            and_(
                                UserDocumentModel.created_at == created_at,
                                UserDocumentModel.id < document_id,
                            ),
                        )
                    )

                result = await session.execute(stmt)
                documents = result.scalars().all()

            has_more = len(documents) > page_size
            documents = documents[:page_size]
            next_cursor = None
            if has_more:
                last = documents[-1]
                next_cursor = encode_cursor(last.created_at, last.id)

            return RecordPage(
                records=[self._to_record(kind, document) for document in documents],
                next_cursor=next_cursor,
            )

        return await self._with_retry("list", fetch)

    async def set_active(
        self,
        owner_id: str,
        kind: ResourceKind,
        record_id: str,
    ) -> RemoteResult[None]:
        """
        Deactivate every active sibling, then activate the target.

        The two steps are separate commits and are retried together; re-running
        is idempotent. A crash in between leaves zero actives, never two.
        """
        if not kind.supports_active:
            raise ValidationError(f"{kind.value} records cannot be activated")

        document_id = self._parse_id(record_id)
        if document_id is None:
            raise NotFoundError(f"Record {record_id} not found", operation="set_active")

        async def deactivate_then_activate() -> None:
            async with self._db.session() as session:
                target = await session.execute(
                    select(UserDocumentModel.id).where(
                        UserDocumentModel.id == document_id,
                        UserDocumentModel.owner_id == owner_id,
                        UserDocumentModel.kind == kind.value,
                    )
                )
                if target.scalar_one_or_none() is None:
                    raise NotFoundError(
                        f"Record {record_id} not found",
                        operation="set_active",
                        table=UserDocumentModel.__tablename__,
                    )

            now = utcnow()
            async with self._db.session() as session:
                await session.execute(
                    update(UserDocumentModel)
                    .where(
                        UserDocumentModel.owner_id == owner_id,
                        UserDocumentModel.kind == kind.value,
                        UserDocumentModel.active.is_(True),
                    )
                    .values(active=False, updated_at=now)
                )

            async with self._db.session() as session:
                await session.execute(
                    update(UserDocumentModel)
                    .where(
                        UserDocumentModel.id == document_id,
                        UserDocumentModel.owner_id == owner_id,
                    )
                    .values(active=True, updated_at=now)
                )

        return await self._with_retry("set_active", deactivate_then_activate)

    async def update(
        self,
        owner_id: str,
        record_id: str,
        fields: dict[str, Any],
    ) -> RemoteResult[bool]:
        """Merge `fields` into a document. Result value is False when not found."""
        forbidden = PROTECTED_FIELDS.intersection(fields)
        if forbidden:
            raise ValidationError(
                "Cannot update protected fields",
                details={"fields": sorted(forbidden)},
            )

        document_id = self._parse_id(record_id)
        if document_id is None:
            return RemoteOk(False)

        async def merge() -> bool:
            async with self._db.session() as session:
                result = await session.execute(
                    select(UserDocumentModel).where(
                        UserDocumentModel.id == document_id,
                        UserDocumentModel.owner_id == owner_id,
                    )
                )
                document = result.scalar_one_or_none()
                if document is None:
                    return False

                kind = ResourceKind(document.kind)
                changes = dict(fields)
                if "active" in changes:
                    if not kind.supports_active:
                        raise ValidationError(f"{kind.value} records cannot be activated")
                    document.active = bool(changes.pop("active"))

                merged = record_model_for(kind).model_validate(
                    {**(document.payload or {}), **changes}
                )
                document.payload = merged.payload()
                document.updated_at = utcnow()
                session.add(document)
                return True

        return await self._with_retry("update", merge)

    async def delete(self, owner_id: str, record_id: str) -> RemoteResult[bool]:
        """Hard-delete a document. Result value is False when not found."""
        document_id = self._parse_id(record_id)
        if document_id is None:
            return RemoteOk(False)

        async def remove() -> bool:
            async with self._db.session() as session:
                result = await session.execute(
                    delete(UserDocumentModel).where(
                        UserDocumentModel.id == document_id,
                        UserDocumentModel.owner_id == owner_id,
                    )
                )
                return (result.rowcount or 0) > 0

        return await self._with_retry("delete", remove)

    # =========================================================================
    # Preferences
    # =========================================================================

    async def get_preferences(self, owner_id: str) -> RemoteResult[Optional[UserPreferences]]:
        """Profile preferences. Result value is None when no profile exists."""

        async def fetch() -> Optional[UserPreferences]:
            async with self._db.session() as session:
                profile = await session.get(UserProfileModel, owner_id)
                if profile is None:
                    return None
                return UserPreferences.model_validate(profile.preferences or {})

        return await self._with_retry("get_preferences", fetch)

    async def merge_preferences(
        self,
        owner_id: str,
        update: UserPreferences,
    ) -> RemoteResult[UserPreferences]:
        """Merge `update` into the profile, creating it on first save."""

        async def merge() -> UserPreferences:
            async with self._db.session() as session:
                profile = await session.get(UserProfileModel, owner_id)
                if profile is None:
                    profile = UserProfileModel(owner_id=owner_id)

                merged = UserPreferences.model_validate(profile.preferences or {}).merged_with(update)
                profile.preferences = merged.model_dump()
                profile.updated_at = utcnow()
                session.add(profile)
                return merged

        return await self._with_retry("merge_preferences", merge)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _with_retry(
        self,
        operation: str,
        step: Callable[[], Awaitable[T]],
    ) -> RemoteResult[T]:
        """Run `step`, retrying transient failures with exponential backoff."""
        last_error: Optional[Exception] = None

        for attempt in range(1, self._max_retries + 1):
            try:
                return RemoteOk(await step())
            except (SQLAlchemyError, TimeoutError, OSError) as e:
                last_error = e

                if is_permission_denied(e):
                    logger.warning(
                        f"Remote {operation} permission denied; continuing in offline mode: {e}"
                    )
                    return Degraded(
                        operation=operation,
                        reason=RemoteFailure.PERMISSION_DENIED,
                        detail=str(e),
                        attempts=attempt,
                    )

                if not is_transient(e):
                    logger.error(f"Remote {operation} failed: {e}")
                    raise RemoteStoreError(
                        f"Remote {operation} failed",
                        operation=operation,
                        original_error=e,
                    ) from e

                if attempt < self._max_retries:
                    delay = min(self._base_delay * (2 ** (attempt - 1)), self._max_delay)
                    logger.warning(
                        f"Remote {operation} transient error. Attempt {attempt}/{self._max_retries}. "
                        f"Retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)

        logger.warning(
            f"Remote {operation} degraded after {self._max_retries} attempts: {last_error}"
        )
        return Degraded(
            operation=operation,
            reason=RemoteFailure.TRANSIENT,
            detail=str(last_error),
            attempts=self._max_retries,
        )

    @staticmethod
    def _parse_id(record_id: str) -> Optional[UUID]:
        try:
            return UUID(record_id)
        except (ValueError, TypeError, AttributeError):
            return None

    @staticmethod
    def _to_record(kind: ResourceKind, document: UserDocumentModel) -> PersistableRecord:
        data = dict(document.payload or {})
        data.update(
            id=str(document.id),
            owner_id=document.owner_id,
            created_at=as_utc(document.created_at),
            updated_at=as_utc(document.updated_at),
        )
        if kind.supports_active:
            data["active"] = bool(document.active)
        return record_model_for(kind).model_validate(data)
