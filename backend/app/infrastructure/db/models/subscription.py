"""
Subscription Database Model

SQLModel table for subscription bookkeeping.
"""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from app.infrastructure.db.models.base import timestamp_field


class SubscriptionModel(SQLModel, table=True):
    """
    Subscription table keyed by user id.

    Maps to the 'subscriptions' table in PostgreSQL.
    """

    __tablename__ = "subscriptions"

    user_id: str = Field(primary_key=True, max_length=128)
    email: Optional[str] = Field(default=None, max_length=320)

    # Stripe IDs
    stripe_customer_id: Optional[str] = Field(default=None, index=True, max_length=255)

    # Subscription details
    tier: str = Field(default="free", max_length=32)
    is_active: bool = Field(default=False)
    cancel_at_period_end: bool = Field(default=False)

    # Payment bookkeeping
    consecutive_payment_failures: int = Field(default=0)
    last_payment_at: Optional[datetime] = timestamp_field(default=None)
    total_paid: int = Field(default=0)
    payment_count: int = Field(default=0)

    # Timestamps
    created_at: datetime = timestamp_field()
    updated_at: datetime = timestamp_field()
