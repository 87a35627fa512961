"""
Persistable Record Models

Resource kinds stored by the tiered persistence layer: sleep schedules,
sleep entries and morning routines, plus the per-user preferences object.
These models are storage-agnostic; the same instance can land in the local
cache or the remote document store.
"""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Literal, Optional, Type
from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny


LOCAL_ID_PREFIX = "local_"


class ResourceKind(str, Enum):
    """Resource kinds handled by the storage layer."""
    SCHEDULE = "schedule"
    ENTRY = "entry"
    ROUTINE = "routine"

    @property
    def supports_active(self) -> bool:
        """Whether the single-active rule applies to this kind."""
        return self in (ResourceKind.SCHEDULE, ResourceKind.ROUTINE)

    @property
    def hard_deletable(self) -> bool:
        """Only sleep entries may be removed outright."""
        return self is ResourceKind.ENTRY


class RecordScope(str, Enum):
    """Which store issued a record id."""
    LOCAL = "local"
    REMOTE = "remote"


# =============================================================================
# Payload Components
# =============================================================================

class ScheduleItem(BaseModel):
    """Single slot of a generated sleep schedule."""
    time: str
    activity: str
    description: str = ""
    category: Literal["evening", "night", "morning"]


class RoutineStep(BaseModel):
    """Single step of a generated morning routine."""
    time: str
    activity: str
    duration_minutes: int = Field(default=5, ge=0)
    description: str = ""


# =============================================================================
# Records
# =============================================================================

class PersistableRecord(BaseModel):
    """Fields shared by every stored record."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    owner_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Envelope fields that the stores manage themselves
    ENVELOPE_FIELDS: ClassVar[set[str]] = {"id", "owner_id", "created_at", "updated_at", "active"}

    def payload(self) -> dict[str, Any]:
        """Kind-specific fields only, JSON-safe."""
        return self.model_dump(mode="json", exclude=self.ENVELOPE_FIELDS)


class ScheduleRecord(PersistableRecord):
    """AI-generated sleep schedule built from a completed questionnaire."""
    title: str
    schedule: list[ScheduleItem] = Field(default_factory=list)
    questionnaire_data: dict[str, Any] = Field(default_factory=dict)
    active: bool = False


class EntryRecord(PersistableRecord):
    """One night of sleep logged by the user."""
    date: str
    bedtime: str
    wake_time: str
    sleep_quality: int = Field(..., ge=1, le=10)
    mood: str
    notes: Optional[str] = None


class RoutineRecord(PersistableRecord):
    """AI-generated morning routine."""
    title: str
    steps: list[RoutineStep] = Field(default_factory=list)
    questionnaire_data: dict[str, Any] = Field(default_factory=dict)
    active: bool = False


RECORD_MODELS: dict[ResourceKind, Type[PersistableRecord]] = {
    ResourceKind.SCHEDULE: ScheduleRecord,
    ResourceKind.ENTRY: EntryRecord,
    ResourceKind.ROUTINE: RoutineRecord,
}


def record_model_for(kind: ResourceKind) -> Type[PersistableRecord]:
    """Get the record class stored under a resource kind."""
    return RECORD_MODELS[kind]


def is_local_id(record_id: str) -> bool:
    """Local cache ids carry a fixed prefix so they never collide with remote ids."""
    return record_id.startswith(LOCAL_ID_PREFIX)


# =============================================================================
# Preferences
# =============================================================================

class UserPreferences(BaseModel):
    """
    Per-user display settings.

    A single object per user rather than a record list. Saves merge: fields
    left unset keep their stored value.
    """
    theme: Optional[str] = Field(default=None, max_length=32)
    notifications: Optional[bool] = None
    timezone: Optional[str] = Field(default=None, max_length=64)

    def merged_with(self, update: "UserPreferences") -> "UserPreferences":
        return self.model_copy(update=update.model_dump(exclude_none=True))

    @property
    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


# =============================================================================
# References & Pages
# =============================================================================

class RecordRef(BaseModel):
    """Handle to a saved record. Ids are only unique within their scope."""
    id: str
    kind: ResourceKind
    scope: RecordScope


class RecordPage(BaseModel):
    """One page of records, newest first."""
    records: list[SerializeAsAny[PersistableRecord]] = Field(default_factory=list)
    next_cursor: Optional[str] = None
