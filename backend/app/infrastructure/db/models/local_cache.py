"""
Local Cache Snapshot Model

One row per (user_id, kind) holding the bounded, newest-first record array.
Lives in the process-local SQLite file, never in the remote database.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel

from app.infrastructure.db.models.base import timestamp_field


class LocalCacheSnapshotModel(SQLModel, table=True):
    """Wholesale-overwritten snapshot of one resource kind for one user."""

    __tablename__ = "local_cache_snapshots"

    user_id: str = Field(primary_key=True, max_length=128)
    kind: str = Field(primary_key=True, max_length=20)
    records: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    updated_at: datetime = timestamp_field()
