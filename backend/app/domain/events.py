"""
Subscription Events

Inbound payment-processor events consumed by the Subscription Tracker and the
outbound TierChanged event it emits.
"""

from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, Field

from app.domain.subscription import SubscriptionTier


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class PaymentSucceeded(_Event):
    user_id: str
    tier: SubscriptionTier
    amount: int = Field(default=0, ge=0)  # In cents
    stripe_customer_id: Optional[str] = None


class PaymentFailed(_Event):
    user_id: str
    reason: Optional[str] = None


class SubscriptionCanceled(_Event):
    user_id: str


class TierChanged(_Event):
    user_id: str
    old_tier: SubscriptionTier
    new_tier: SubscriptionTier


PaymentEvent = Union[PaymentSucceeded, PaymentFailed, SubscriptionCanceled]
