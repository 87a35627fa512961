"""
UserProfile SQLModel for SleepVision

Remote home of per-user preferences. One row per owner, merged in place.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel

from app.infrastructure.db.models.base import timestamp_field


class UserProfileModel(SQLModel, table=True):
    """Owner-scoped preferences (theme, notifications, timezone)."""

    __tablename__ = "user_profiles"

    owner_id: str = Field(primary_key=True, max_length=128)
    preferences: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    created_at: datetime = timestamp_field()
    updated_at: datetime = timestamp_field()
