"""
Storage Router

Single entry point for record reads and writes. Decides per call whether a
record lives in the Local Bounded Cache or the Remote Store, based on the
user's current entitlement.

Saves degrade silently to the local cache; loads for entitled users never
do, and surface a retryable error instead.
"""

import logging
from typing import Optional

from app.domain.interfaces import LocalCache, RemoteStore, SubscriptionSource
from app.domain.records import (
    PersistableRecord,
    RecordPage,
    RecordRef,
    RecordScope,
    ResourceKind,
    UserPreferences,
    is_local_id,
    record_model_for,
)
from app.domain.storage import (
    Degraded,
    LocalClearResult,
    PreferencesResult,
    RemoteFailure,
    RemoteResult,
    SaveResult,
    SaveState,
    StorageInfo,
)
from app.domain.subscription import (
    Entitlement,
    StorageQuotas,
    SubscriptionTier,
    resolve_entitlement,
)
from app.infrastructure.exceptions import (
    NotFoundError,
    RemoteStoreError,
    RemoteUnavailableError,
    StorageError,
    ValidationError,
)


logger = logging.getLogger(__name__)


def quota_for(kind: ResourceKind, quotas: StorageQuotas) -> Optional[int]:
    """Local cache capacity for a kind. None means unbounded."""
    return {
        ResourceKind.SCHEDULE: quotas.max_local_schedules,
        ResourceKind.ENTRY: quotas.max_local_entries,
        ResourceKind.ROUTINE: quotas.max_local_routines,
    }[kind]


class StorageRouter:
    """Routes record operations between the local cache and the remote store."""

    def __init__(
        self,
        subscriptions: SubscriptionSource,
        local_cache: LocalCache,
        remote_store: RemoteStore,
        default_page_size: int = 20,
        max_page_size: int = 100,
    ):
        self._subscriptions = subscriptions
        self._local = local_cache
        self._remote = remote_store
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size

    async def entitlement_for(self, user_id: str) -> Entitlement:
        status = await self._subscriptions.get_status(user_id)
        return resolve_entitlement(status.effective_tier)

    # =========================================================================
    # Save
    # =========================================================================

    async def save(
        self,
        user_id: str,
        kind: ResourceKind,
        record: PersistableRecord,
    ) -> SaveResult:
        """
        Persist a record wherever the user's tier allows.

        Never raises for remote failures. The result state is FAILED only
        when the local cache itself could not take the write.
        """
        if not isinstance(record, record_model_for(kind)):
            raise ValidationError(
                f"Expected a {kind.value} record",
                details={"kind": kind.value, "got": type(record).__name__},
            )

        trace = [SaveState.START]
        entitlement = await self.entitlement_for(user_id)
        quotas = entitlement.quotas
        detail: Optional[str] = None

        if entitlement.has_remote_access:
            trace.append(SaveState.REMOTE_ATTEMPT)
            result = await self._remote_write(user_id, kind, record)

            if not isinstance(result, Degraded):
                trace.append(SaveState.REMOTE_OK)
                if kind.supports_active and getattr(record, "active", False):
                    await self._activate_remote_best_effort(user_id, kind, result.value)
                trace.append(SaveState.DONE)
                return SaveResult(
                    ref=RecordRef(id=result.value, kind=kind, scope=RecordScope.REMOTE),
                    state=SaveState.DONE,
                    trace=trace,
                )

            trace.append(SaveState.REMOTE_DEGRADED)
            detail = f"Remote {result.reason.value}; saved locally"
            logger.warning(
                f"Remote save degraded for {user_id}/{kind.value} ({result.reason.value}), "
                f"falling back to local cache"
            )
            # Degraded calls are handled as if the user were on the free tier
            quotas = resolve_entitlement(SubscriptionTier.FREE).quotas
        else:
            trace.append(SaveState.NO_REMOTE_ACCESS)

        trace.append(SaveState.LOCAL_WRITE)
        try:
            stored = await self._local.write(user_id, kind, record, quota_for(kind, quotas))
        except StorageError as e:
            trace.append(SaveState.FAILED)
            logger.error(f"Local save failed for {user_id}/{kind.value}: {e.message}")
            return SaveResult(ref=None, state=SaveState.FAILED, trace=trace, detail=e.message)

        trace.append(SaveState.DONE)
        return SaveResult(
            ref=RecordRef(id=stored.id, kind=kind, scope=RecordScope.LOCAL),
            state=SaveState.DONE,
            trace=trace,
            detail=detail,
        )

    async def _remote_write(
        self,
        user_id: str,
        kind: ResourceKind,
        record: PersistableRecord,
    ) -> RemoteResult[str]:
        # Written inactive; activation goes through set_active so that a
        # failure there never leaves two actives behind.
        if kind.supports_active:
            record = record.model_copy(update={"active": False})
        try:
            return await self._remote.write(user_id, kind, record)
        except RemoteStoreError as e:
            return Degraded(operation="write", reason=RemoteFailure.TRANSIENT, detail=e.message)

    async def _activate_remote_best_effort(
        self,
        user_id: str,
        kind: ResourceKind,
        record_id: str,
    ) -> None:
        try:
            result = await self._remote.set_active(user_id, kind, record_id)
        except (RemoteStoreError, NotFoundError) as e:
            logger.warning(f"Could not activate {kind.value} {record_id} for {user_id}: {e.message}")
            return
        if isinstance(result, Degraded):
            logger.warning(
                f"Could not activate {kind.value} {record_id} for {user_id}: {result.reason.value}"
            )

    # =========================================================================
    # Load
    # =========================================================================

    async def load(
        self,
        user_id: str,
        kind: ResourceKind,
        page_size: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> RecordPage:
        """
        One page of records, newest first.

        Raises:
            RemoteUnavailableError: entitled user and the remote is degraded
        """
        size = self._page_size(page_size)
        entitlement = await self.entitlement_for(user_id)

        if entitlement.has_remote_access:
            result = await self._remote.list(user_id, kind, size, cursor)
            if isinstance(result, Degraded):
                raise RemoteUnavailableError(operation="list", kind=kind.value)
            return result.value

        records = await self._local.read(user_id, kind)
        offset = self._local_offset(cursor)
        window = records[offset:offset + size]
        next_offset = offset + size
        return RecordPage(
            records=window,
            next_cursor=str(next_offset) if next_offset < len(records) else None,
        )

    def _page_size(self, page_size: Optional[int]) -> int:
        if page_size is None:
            return self._default_page_size
        if page_size < 1:
            raise ValidationError("page_size must be positive", details={"page_size": page_size})
        return min(page_size, self._max_page_size)

    @staticmethod
    def _local_offset(cursor: Optional[str]) -> int:
        if not cursor:
            return 0
        if not cursor.isdigit():
            raise ValidationError("Invalid pagination cursor", details={"cursor": cursor})
        return int(cursor)

    # =========================================================================
    # Mutations
    # =========================================================================

    async def set_active(
        self,
        user_id: str,
        kind: ResourceKind,
        record_id: str,
    ) -> RecordRef:
        """Make one schedule or routine the active one."""
        if not kind.supports_active:
            raise ValidationError(f"{kind.value} records cannot be activated")

        if is_local_id(record_id):
            if not await self._local.set_active(user_id, kind, record_id):
                raise NotFoundError(f"Record {record_id} not found", operation="set_active")
            return RecordRef(id=record_id, kind=kind, scope=RecordScope.LOCAL)

        await self._require_remote(user_id, record_id, "set_active")
        result = await self._remote.set_active(user_id, kind, record_id)
        if isinstance(result, Degraded):
            raise RemoteUnavailableError(operation="set_active", kind=kind.value)

        logger.info(f"Activated {kind.value} {record_id} for {user_id}")
        return RecordRef(id=record_id, kind=kind, scope=RecordScope.REMOTE)

    async def delete(self, user_id: str, kind: ResourceKind, record_id: str) -> None:
        """Remove a sleep entry. Schedules and routines are never deleted outright."""
        if not kind.hard_deletable:
            raise ValidationError(f"{kind.value} records cannot be deleted")

        if is_local_id(record_id):
            if not await self._local.delete(user_id, kind, record_id):
                raise NotFoundError(f"Record {record_id} not found", operation="delete")
            return

        await self._require_remote(user_id, record_id, "delete")
        result = await self._remote.delete(user_id, record_id)
        if isinstance(result, Degraded):
            raise RemoteUnavailableError(operation="delete", kind=kind.value)
        if not result.value:
            raise NotFoundError(f"Record {record_id} not found", operation="delete")

    async def _require_remote(self, user_id: str, record_id: str, operation: str) -> None:
        entitlement = await self.entitlement_for(user_id)
        if not entitlement.has_remote_access:
            raise NotFoundError(f"Record {record_id} not found", operation=operation)

    # =========================================================================
    # Preferences
    # =========================================================================

    async def save_preferences(self, user_id: str, update: UserPreferences) -> PreferencesResult:
        """
        Merge preference changes into the user's profile or local cache.

        Follows the record save path: remote for entitled users, local on
        degradation, FAILED only when the local cache cannot take the write.
        """
        trace = [SaveState.START]
        entitlement = await self.entitlement_for(user_id)
        detail: Optional[str] = None

        if entitlement.has_remote_access:
            trace.append(SaveState.REMOTE_ATTEMPT)
            try:
                result = await self._remote.merge_preferences(user_id, update)
            except RemoteStoreError as e:
                result = Degraded(
                    operation="merge_preferences",
                    reason=RemoteFailure.TRANSIENT,
                    detail=e.message,
                )

            if not isinstance(result, Degraded):
                trace += [SaveState.REMOTE_OK, SaveState.DONE]
                return PreferencesResult(
                    preferences=result.value,
                    scope=RecordScope.REMOTE,
                    state=SaveState.DONE,
                    trace=trace,
                )

            trace.append(SaveState.REMOTE_DEGRADED)
            detail = f"Remote {result.reason.value}; saved locally"
            logger.warning(
                f"Remote preferences save degraded for {user_id} ({result.reason.value}), "
                f"falling back to local cache"
            )
        else:
            trace.append(SaveState.NO_REMOTE_ACCESS)

        trace.append(SaveState.LOCAL_WRITE)
        try:
            merged = await self._local.write_preferences(user_id, update)
        except StorageError as e:
            trace.append(SaveState.FAILED)
            logger.error(f"Local preferences save failed for {user_id}: {e.message}")
            return PreferencesResult(state=SaveState.FAILED, trace=trace, detail=e.message)

        trace.append(SaveState.DONE)
        return PreferencesResult(
            preferences=merged,
            scope=RecordScope.LOCAL,
            state=SaveState.DONE,
            trace=trace,
            detail=detail,
        )

    async def load_preferences(self, user_id: str) -> UserPreferences:
        """
        Current preferences; all fields unset when none were saved.

        Raises:
            RemoteUnavailableError: entitled user and the remote is degraded
        """
        entitlement = await self.entitlement_for(user_id)

        if entitlement.has_remote_access:
            result = await self._remote.get_preferences(user_id)
            if isinstance(result, Degraded):
                raise RemoteUnavailableError(operation="get_preferences")
            return result.value or UserPreferences()

        return await self._local.read_preferences(user_id) or UserPreferences()

    # =========================================================================
    # Reporting
    # =========================================================================

    async def storage_info(self, user_id: str) -> StorageInfo:
        """Tier, quotas and local cache usage for a user."""
        entitlement = await self.entitlement_for(user_id)
        usage = await self._local.usage(user_id)
        return StorageInfo(
            tier=entitlement.tier,
            has_remote_access=entitlement.has_remote_access,
            quotas=entitlement.quotas,
            features=entitlement.features,
            local_usage=usage,
        )

    async def clear_local(self, user_id: str) -> LocalClearResult:
        """Drop every locally cached record and the cached preferences."""
        return await self._local.clear_all(user_id)
