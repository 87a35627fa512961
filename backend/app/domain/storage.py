"""
Storage Domain Models

Typed outcomes for the tiered persistence layer: remote results, the save
state machine, migration jobs and storage usage reports.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, Optional, TypeVar, Union
from uuid import uuid4

from pydantic import BaseModel, Field

from app.domain.records import RecordRef, RecordScope, ResourceKind, UserPreferences
from app.domain.subscription import StorageQuotas, SubscriptionTier, TierFeatures


T = TypeVar("T")


# =============================================================================
# Remote Results
# =============================================================================

class RemoteFailure(str, Enum):
    """Why a remote operation degraded."""
    TRANSIENT = "transient"
    PERMISSION_DENIED = "permission_denied"


@dataclass(frozen=True)
class RemoteOk(Generic[T]):
    """Remote operation completed."""
    value: T


@dataclass(frozen=True)
class Degraded:
    """
    Remote operation could not complete.

    Not an error: callers fall back to local handling (writes) or surface a
    retryable state (reads).
    """
    operation: str
    reason: RemoteFailure
    detail: str = ""
    attempts: int = 1


RemoteResult = Union[RemoteOk[T], Degraded]


# =============================================================================
# Save State Machine
# =============================================================================

class SaveState(str, Enum):
    """States visited by a single Storage Router save call."""
    START = "start"
    REMOTE_ATTEMPT = "remote_attempt"
    REMOTE_OK = "remote_ok"
    REMOTE_DEGRADED = "remote_degraded"
    NO_REMOTE_ACCESS = "no_remote_access"
    LOCAL_WRITE = "local_write"
    DONE = "done"
    FAILED = "failed"


class SaveResult(BaseModel):
    """Outcome of a save. `ref` is None only when the state is FAILED."""
    ref: Optional[RecordRef] = None
    state: SaveState
    trace: list[SaveState] = Field(default_factory=list)
    detail: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state == SaveState.DONE

    @property
    def fell_back(self) -> bool:
        return SaveState.REMOTE_DEGRADED in self.trace


class PreferencesResult(BaseModel):
    """Outcome of a preferences save. `preferences` is None only when the state is FAILED."""
    preferences: Optional[UserPreferences] = None
    scope: Optional[RecordScope] = None
    state: SaveState
    trace: list[SaveState] = Field(default_factory=list)
    detail: Optional[str] = None

    @property
    def fell_back(self) -> bool:
        return SaveState.REMOTE_DEGRADED in self.trace


# =============================================================================
# Migration
# =============================================================================

class MigrationStatus(str, Enum):
    """Lifecycle of a migration job."""
    PENDING = "pending"
    COPYING = "copying"
    COMPLETED = "completed"
    FAILED = "failed"


class MigrationJob(BaseModel):
    """Transient record of one local -> remote migration run."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    status: MigrationStatus = MigrationStatus.PENDING
    source_counts: dict[ResourceKind, int] = Field(default_factory=dict)
    copied: int = 0
    failed: int = 0
    remote_ids: list[str] = Field(default_factory=list)
    preferences_copied: bool = False
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return sum(self.source_counts.values())


# =============================================================================
# Storage Info
# =============================================================================

class StorageInfo(BaseModel):
    """Storage usage report for a user."""
    tier: SubscriptionTier
    has_remote_access: bool
    quotas: StorageQuotas
    features: TierFeatures
    local_usage: dict[ResourceKind, int] = Field(default_factory=dict)


class LocalClearResult(BaseModel):
    """What a user-requested local cache clear removed."""
    cleared: dict[ResourceKind, int] = Field(default_factory=dict)
    preferences_cleared: bool = False
