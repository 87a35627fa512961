"""
Processed Webhook Event Model

Stripe event ids already applied, so redelivered events are skipped.
"""

from datetime import datetime

from sqlmodel import Field, SQLModel

from app.infrastructure.db.models.base import timestamp_field


class ProcessedWebhookEvent(SQLModel, table=True):
    __tablename__ = "processed_webhook_events"

    event_id: str = Field(primary_key=True, max_length=255)
    event_type: str = Field(max_length=100)
    processed_at: datetime = timestamp_field()
