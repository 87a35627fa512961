"""
Storage Interfaces for SleepVision

Protocols the Storage Router and Migration Orchestrator depend on.
Concrete adapters live in app.infrastructure.storage; tests substitute fakes.
"""

from typing import Awaitable, Callable, Optional, Protocol, runtime_checkable

from app.domain.events import TierChanged
from app.domain.records import PersistableRecord, RecordPage, ResourceKind, UserPreferences
from app.domain.storage import LocalClearResult, RemoteResult
from app.domain.subscription import SubscriptionStatus


TierChangedListener = Callable[[TierChanged], Awaitable[None]]


@runtime_checkable
class LocalCache(Protocol):
    """Bounded, network-free per-user record cache."""

    async def write(
        self,
        user_id: str,
        kind: ResourceKind,
        record: PersistableRecord,
        quota: Optional[int],
    ) -> PersistableRecord: ...

    async def read(self, user_id: str, kind: ResourceKind) -> list[PersistableRecord]: ...

    async def clear(self, user_id: str, kind: ResourceKind) -> None: ...

    async def remove_ids(self, user_id: str, kind: ResourceKind, ids: set[str]) -> int: ...

    async def snapshot(self, user_id: str) -> dict[ResourceKind, list[PersistableRecord]]: ...

    async def set_active(self, user_id: str, kind: ResourceKind, record_id: str) -> bool: ...

    async def delete(self, user_id: str, kind: ResourceKind, record_id: str) -> bool: ...

    async def usage(self, user_id: str) -> dict[ResourceKind, int]: ...

    async def clear_all(self, user_id: str) -> LocalClearResult: ...

    async def read_preferences(self, user_id: str) -> Optional[UserPreferences]: ...

    async def write_preferences(self, user_id: str, update: UserPreferences) -> UserPreferences: ...

    async def remove_preferences(self, user_id: str, expected: UserPreferences) -> bool: ...


@runtime_checkable
class RemoteStore(Protocol):
    """Owner-scoped, cursor-paginated document store."""

    async def write(
        self,
        owner_id: str,
        kind: ResourceKind,
        record: PersistableRecord,
    ) -> RemoteResult[str]: ...

    async def list(
        self,
        owner_id: str,
        kind: ResourceKind,
        page_size: int,
        cursor: Optional[str] = None,
    ) -> RemoteResult[RecordPage]: ...

    async def set_active(
        self,
        owner_id: str,
        kind: ResourceKind,
        record_id: str,
    ) -> RemoteResult[None]: ...

    async def update(
        self,
        owner_id: str,
        record_id: str,
        fields: dict,
    ) -> RemoteResult[bool]: ...

    async def delete(self, owner_id: str, record_id: str) -> RemoteResult[bool]: ...

    async def get_preferences(self, owner_id: str) -> RemoteResult[Optional[UserPreferences]]: ...

    async def merge_preferences(
        self,
        owner_id: str,
        update: UserPreferences,
    ) -> RemoteResult[UserPreferences]: ...


@runtime_checkable
class SubscriptionSource(Protocol):
    """Read access to a user's current subscription status."""

    async def get_status(self, user_id: str) -> SubscriptionStatus: ...
