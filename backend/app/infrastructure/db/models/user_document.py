"""
UserDocument SQLModel for SleepVision

Remote document store table. One row per record, scoped by owner and
resource kind. Rows are created, never replaced.
"""

from typing import Any, Optional

from sqlalchemy import Column, Index, JSON
from sqlmodel import Field

from app.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class UserDocumentModel(UUIDMixin, TimestampMixin, table=True):
    """
    Owner-scoped document (schedule, entry or routine).

    `active` is only meaningful for schedules and routines; entries keep it NULL.
    """

    __tablename__ = "user_documents"
    __table_args__ = (
        Index("ix_user_documents_owner_kind_created", "owner_id", "kind", "created_at"),
    )

    owner_id: str = Field(..., max_length=128, index=True, nullable=False)
    kind: str = Field(..., max_length=20, nullable=False)
    active: Optional[bool] = Field(default=None)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
