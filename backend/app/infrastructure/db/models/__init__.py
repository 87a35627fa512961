"""
SQLModel ORM Models for SleepVision

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from app.infrastructure.db.models.base import (
    TimestampMixin,
    UUIDMixin,
    as_utc,
    utcnow,
)
from app.infrastructure.db.models.user_document import UserDocumentModel
from app.infrastructure.db.models.user_profile import UserProfileModel
from app.infrastructure.db.models.subscription import SubscriptionModel
from app.infrastructure.db.models.local_cache import LocalCacheSnapshotModel
from app.infrastructure.db.models.webhook_event import ProcessedWebhookEvent


# Tables that live in the remote database (Alembic-managed)
REMOTE_TABLES = [
    UserDocumentModel.__table__,
    UserProfileModel.__table__,
    SubscriptionModel.__table__,
    ProcessedWebhookEvent.__table__,
]

# Tables that live in the process-local cache file
LOCAL_TABLES = [
    LocalCacheSnapshotModel.__table__,
]


__all__ = [
    # Base
    "TimestampMixin",
    "UUIDMixin",
    "as_utc",
    "utcnow",
    # Tables
    "UserDocumentModel",
    "UserProfileModel",
    "SubscriptionModel",
    "LocalCacheSnapshotModel",
    "ProcessedWebhookEvent",
    "REMOTE_TABLES",
    "LOCAL_TABLES",
]
