"""
Base Model for SQLModel ORM

Provides common fields and behavior for all database models.
Timestamps are timezone-aware UTC and mapped to `timestamptz` columns.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Current time as timezone-aware UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to a naive timestamp.

    SQLite hands `DateTime(timezone=True)` columns back without an offset.
    """
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def timestamp_field(**kwargs) -> Any:
    """Field for a timezone-aware timestamp column defaulting to now."""
    if "default" not in kwargs:
        kwargs.setdefault("default_factory", utcnow)
    return Field(sa_type=DateTime(timezone=True), **kwargs)


class TimestampMixin(SQLModel):
    """Mixin providing timestamp fields for models."""

    created_at: datetime = timestamp_field(
        nullable=False,
        index=True,
        description="Record creation timestamp (UTC)"
    )
    updated_at: datetime = timestamp_field(
        nullable=False,
        description="Last update timestamp (UTC)"
    )


class UUIDMixin(SQLModel):
    """Mixin providing UUID primary key."""

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        nullable=False,
        description="Unique identifier (UUID v4)"
    )
