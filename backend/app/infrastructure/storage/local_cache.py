"""
Local Bounded Cache

Process-local persistent store for users without remote access. Each
(user_id, kind) pair owns one snapshot row holding a newest-first record
array, capped at the tier quota. Capacity eviction is strictly oldest-first
(bounded FIFO). Snapshots are rewritten wholesale on every mutation.
Preferences share the table under their own key and merge on write.
"""

import errno
import logging
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.records import (
    LOCAL_ID_PREFIX,
    PersistableRecord,
    ResourceKind,
    UserPreferences,
    record_model_for,
)
from app.domain.storage import LocalClearResult
from app.infrastructure.db.database import DatabaseManager
from app.infrastructure.db.models import LOCAL_TABLES, LocalCacheSnapshotModel, utcnow
from app.infrastructure.exceptions import LocalStorageFullError, StorageError


logger = logging.getLogger(__name__)

# Snapshot key for the single preferences object, alongside the ResourceKind rows
PREFERENCES_KEY = "preferences"

_EXHAUSTION_MARKERS = ("database or disk is full", "disk i/o error", "no space left")


def new_local_id(kind: ResourceKind) -> str:
    """Generate a local-scoped record id."""
    return f"{LOCAL_ID_PREFIX}{kind.value}_{uuid4().hex}"


def _is_medium_exhausted(error: Exception) -> bool:
    if isinstance(error, OSError) and error.errno == errno.ENOSPC:
        return True
    message = str(error).lower()
    return any(marker in message for marker in _EXHAUSTION_MARKERS)


class LocalBoundedCache:
    """
    Bounded per-user record cache backed by a local SQLite file.

    No network I/O. Writes only fail when the storage medium is exhausted,
    in which case the write is dropped and LocalStorageFullError is raised.
    """

    def __init__(self, db: DatabaseManager):
        self._db = db

    async def initialize(self) -> None:
        """Create the snapshot table if it does not exist yet."""
        await self._db.create_tables(LOCAL_TABLES)

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def write(
        self,
        user_id: str,
        kind: ResourceKind,
        record: PersistableRecord,
        quota: Optional[int],
    ) -> PersistableRecord:
        """
        Prepend a record and truncate to `quota` (None = unbounded).

        An active schedule/routine deactivates its siblings in the same
        overwrite, so the snapshot never holds two actives.
        """
        now = utcnow()
        stored = record.model_copy(update={
            "id": new_local_id(kind),
            "owner_id": user_id,
            "created_at": record.created_at or now,
            "updated_at": now,
        })

        async with self._guard("write", kind.value):
            async with self._db.session() as session:
                existing = await self._load(session, user_id, kind.value)

                if kind.supports_active and getattr(stored, "active", False):
                    existing = [_with_active(item, False) for item in existing]

                records = [stored.model_dump(mode="json")] + existing
                if quota is not None and len(records) > quota:
                    evicted = len(records) - quota
                    records = records[:quota]
                    logger.info(
                        f"Local cache quota reached for {user_id}/{kind.value}: "
                        f"evicted {evicted} oldest record(s), keeping {quota}"
                    )

                await self._store(session, user_id, kind.value, records)

        return stored

    async def read(self, user_id: str, kind: ResourceKind) -> list[PersistableRecord]:
        """Records for (user_id, kind), newest first."""
        async with self._guard("read", kind.value):
            async with self._db.session() as session:
                raw = await self._load(session, user_id, kind.value)

        model = record_model_for(kind)
        return [model.model_validate(item) for item in raw]

    async def clear(self, user_id: str, kind: ResourceKind) -> None:
        """Drop the snapshot for (user_id, kind)."""
        async with self._guard("clear", kind.value):
            async with self._db.session() as session:
                await session.execute(
                    delete(LocalCacheSnapshotModel).where(
                        LocalCacheSnapshotModel.user_id == user_id,
                        LocalCacheSnapshotModel.kind == kind.value,
                    )
                )
        logger.debug(f"Cleared local cache for {user_id}/{kind.value}")

    async def remove_ids(self, user_id: str, kind: ResourceKind, ids: set[str]) -> int:
        """
        Drop only the given records from a snapshot, in one read-filter-store.

        Records written after `ids` was collected stay cached. Returns the
        number of records removed.
        """
        if not ids:
            return 0

        async with self._guard("remove_ids", kind.value):
            async with self._db.session() as session:
                records = await self._load(session, user_id, kind.value)
                remaining = [item for item in records if item.get("id") not in ids]
                removed = len(records) - len(remaining)
                if removed:
                    await self._store(session, user_id, kind.value, remaining)

        logger.debug(f"Removed {removed} record(s) from local cache for {user_id}/{kind.value}")
        return removed

    # =========================================================================
    # Snapshot Helpers
    # =========================================================================

    async def snapshot(self, user_id: str) -> dict[ResourceKind, list[PersistableRecord]]:
        """Every cached record for a user, keyed by kind."""
        async with self._guard("snapshot"):
            async with self._db.session() as session:
                result = await session.execute(
                    select(LocalCacheSnapshotModel).where(
                        LocalCacheSnapshotModel.user_id == user_id
                    )
                )
                rows = {row.kind: list(row.records or []) for row in result.scalars().all()}

        snapshot: dict[ResourceKind, list[PersistableRecord]] = {}
        for kind in ResourceKind:
            model = record_model_for(kind)
            snapshot[kind] = [model.model_validate(item) for item in rows.get(kind.value, [])]
        return snapshot

    async def set_active(self, user_id: str, kind: ResourceKind, record_id: str) -> bool:
        """Mark one cached record active and every sibling inactive."""
        async with self._guard("set_active", kind.value):
            async with self._db.session() as session:
                records = await self._load(session, user_id, kind.value)
                if not any(item.get("id") == record_id for item in records):
                    return False

                now = utcnow().isoformat()
                updated = []
                for item in records:
                    is_target = item.get("id") == record_id
                    if bool(item.get("active")) != is_target:
                        item = {**_with_active(item, is_target), "updated_at": now}
                    updated.append(item)

                await self._store(session, user_id, kind.value, updated)
        return True

    async def delete(self, user_id: str, kind: ResourceKind, record_id: str) -> bool:
        """Remove one cached record. Returns False when it was not cached."""
        async with self._guard("delete", kind.value):
            async with self._db.session() as session:
                records = await self._load(session, user_id, kind.value)
                remaining = [item for item in records if item.get("id") != record_id]
                if len(remaining) == len(records):
                    return False
                await self._store(session, user_id, kind.value, remaining)
        return True

    async def usage(self, user_id: str) -> dict[ResourceKind, int]:
        """Number of cached records per kind."""
        snapshot = await self.snapshot(user_id)
        return {kind: len(records) for kind, records in snapshot.items()}

    async def clear_all(self, user_id: str) -> LocalClearResult:
        """Drop every snapshot for a user, preferences included."""
        async with self._guard("clear_all"):
            async with self._db.session() as session:
                result = await session.execute(
                    select(LocalCacheSnapshotModel).where(
                        LocalCacheSnapshotModel.user_id == user_id
                    )
                )
                rows = {row.kind: len(row.records or []) for row in result.scalars().all()}
                await session.execute(
                    delete(LocalCacheSnapshotModel).where(
                        LocalCacheSnapshotModel.user_id == user_id
                    )
                )

        cleared = LocalClearResult(
            cleared={kind: rows.get(kind.value, 0) for kind in ResourceKind},
            preferences_cleared=rows.get(PREFERENCES_KEY, 0) > 0,
        )
        logger.info(
            f"Cleared local cache for {user_id}: "
            f"{sum(cleared.cleared.values())} record(s), preferences={cleared.preferences_cleared}"
        )
        return cleared

    # =========================================================================
    # Preferences
    # =========================================================================

    async def read_preferences(self, user_id: str) -> Optional[UserPreferences]:
        """Cached preferences, or None when nothing was saved locally."""
        async with self._guard("read_preferences", PREFERENCES_KEY):
            async with self._db.session() as session:
                raw = await self._load(session, user_id, PREFERENCES_KEY)
        return UserPreferences.model_validate(raw[0]) if raw else None

    async def write_preferences(self, user_id: str, update: UserPreferences) -> UserPreferences:
        """Merge `update` into the cached preferences and return the result."""
        async with self._guard("write_preferences", PREFERENCES_KEY):
            async with self._db.session() as session:
                raw = await self._load(session, user_id, PREFERENCES_KEY)
                current = UserPreferences.model_validate(raw[0]) if raw else UserPreferences()
                merged = current.merged_with(update)
                await self._store(session, user_id, PREFERENCES_KEY, [merged.model_dump()])
        return merged

    async def remove_preferences(self, user_id: str, expected: UserPreferences) -> bool:
        """
        Drop the cached preferences if they still equal `expected`.

        A save that landed after `expected` was read keeps its value cached.
        """
        async with self._guard("remove_preferences", PREFERENCES_KEY):
            async with self._db.session() as session:
                raw = await self._load(session, user_id, PREFERENCES_KEY)
                if not raw or UserPreferences.model_validate(raw[0]) != expected:
                    return False
                await session.execute(
                    delete(LocalCacheSnapshotModel).where(
                        LocalCacheSnapshotModel.user_id == user_id,
                        LocalCacheSnapshotModel.kind == PREFERENCES_KEY,
                    )
                )
        return True

    # =========================================================================
    # Internals
    # =========================================================================

    async def _load(
        self,
        session: AsyncSession,
        user_id: str,
        key: str,
    ) -> list[dict[str, Any]]:
        row = await session.get(LocalCacheSnapshotModel, (user_id, key))
        if row is None:
            return []
        return list(row.records or [])

    async def _store(
        self,
        session: AsyncSession,
        user_id: str,
        key: str,
        records: list[dict[str, Any]],
    ) -> None:
        stmt = sqlite_insert(LocalCacheSnapshotModel).values(
            user_id=user_id,
            kind=key,
            records=records,
            updated_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "kind"],
            set_={
                "records": stmt.excluded.records,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await session.execute(stmt)

    def _guard(self, operation: str, key: Optional[str] = None):
        return _LocalMediumGuard(operation, key)


class _LocalMediumGuard:
    """Translate database and storage-medium failures into storage exceptions."""

    def __init__(self, operation: str, key: Optional[str]):
        self._operation = operation
        self._kind = key

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc is None or not isinstance(exc, (SQLAlchemyError, OSError)):
            return False

        if _is_medium_exhausted(exc):
            logger.error(
                f"Local cache medium exhausted during {self._operation}; write dropped: {exc}"
            )
            raise LocalStorageFullError(
                "Local storage is full",
                operation=self._operation,
                kind=self._kind,
                original_error=exc,
            ) from exc

        logger.error(f"Local cache {self._operation} failed: {exc}")
        raise StorageError(
            f"Local cache {self._operation} failed",
            operation=self._operation,
            kind=self._kind,
            original_error=exc,
        ) from exc


def _with_active(item: dict[str, Any], active: bool) -> dict[str, Any]:
    return {**item, "active": active}
