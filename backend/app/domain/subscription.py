"""
Subscription Domain Models

Domain models for subscription management and entitlements.
Enums, entities, and the tier -> entitlement table for the subscription
bounded context.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, Field


# Consecutive failed payments before a paid user is forced back to free
MAX_CONSECUTIVE_PAYMENT_FAILURES = 3


class SubscriptionTier(str, Enum):
    """Subscription tier levels, declared lowest to highest."""
    FREE = "free"
    SLEEP_FOCUSED = "sleep-focused"
    FULL_TRANSFORMATION = "full-transformation"
    ELITE_PERFORMANCE = "elite-performance"

    @property
    def rank(self) -> int:
        """Position in the tier ordering (free is 0)."""
        return list(SubscriptionTier).index(self)

    def __lt__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank >= other.rank


# =============================================================================
# Domain Entities
# =============================================================================

class UserIdentity(BaseModel):
    """User identity captured at first sign-in. Never mutated afterwards."""
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    email: Optional[str] = None


class StorageQuotas(BaseModel):
    """Local cache quotas per resource kind. None means unbounded."""
    model_config = ConfigDict(frozen=True)

    max_local_entries: Optional[int] = Field(default=None, ge=1)
    max_local_schedules: Optional[int] = Field(default=None, ge=1)
    max_local_routines: Optional[int] = Field(default=None, ge=1)


class TierFeatures(BaseModel):
    """Product feature flags unlocked by a tier."""
    model_config = ConfigDict(frozen=True)

    cloud_storage: bool = False
    sleep_tracking: bool = False
    morning_routines: bool = False
    unlimited_entries: bool = False
    product_discounts: bool = False


class Entitlement(BaseModel):
    """Capability set and quotas derived from a subscription tier."""
    model_config = ConfigDict(frozen=True)

    tier: SubscriptionTier
    has_remote_access: bool
    quotas: StorageQuotas
    features: TierFeatures


class SubscriptionStatus(BaseModel):
    """
    Subscription state for one user.

    Mutated only by the Subscription Tracker in response to payment events.
    """
    user_id: str
    email: Optional[str] = None
    tier: SubscriptionTier = SubscriptionTier.FREE
    is_active: bool = False
    consecutive_payment_failures: int = Field(default=0, ge=0)
    last_payment_at: Optional[datetime] = None
    total_paid: int = 0  # In cents
    payment_count: int = 0
    stripe_customer_id: Optional[str] = None
    cancel_at_period_end: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def effective_tier(self) -> SubscriptionTier:
        """Tier that currently gates capabilities (inactive means free)."""
        if not self.is_active:
            return SubscriptionTier.FREE
        return self.tier


# =============================================================================
# Response DTOs
# =============================================================================

class SubscriptionStatusResponse(BaseModel):
    """Response DTO for subscription status."""
    tier: SubscriptionTier
    is_active: bool
    has_remote_access: bool
    consecutive_payment_failures: int
    last_payment_at: Optional[datetime] = None
    cancel_at_period_end: bool = False


# =============================================================================
# Tier Configuration (Entitlement Resolver)
# =============================================================================

TIER_ENTITLEMENTS: dict[SubscriptionTier, Entitlement] = {
    SubscriptionTier.FREE: Entitlement(
        tier=SubscriptionTier.FREE,
        has_remote_access=False,
        quotas=StorageQuotas(
            max_local_entries=3,
            max_local_schedules=2,
            max_local_routines=1,
        ),
        features=TierFeatures(),
    ),
    SubscriptionTier.SLEEP_FOCUSED: Entitlement(
        tier=SubscriptionTier.SLEEP_FOCUSED,
        has_remote_access=True,
        quotas=StorageQuotas(
            max_local_entries=100,
            max_local_schedules=5,
            max_local_routines=1,
        ),
        features=TierFeatures(cloud_storage=True, sleep_tracking=True),
    ),
    SubscriptionTier.FULL_TRANSFORMATION: Entitlement(
        tier=SubscriptionTier.FULL_TRANSFORMATION,
        has_remote_access=True,
        quotas=StorageQuotas(
            max_local_entries=365,
            max_local_schedules=10,
            max_local_routines=5,
        ),
        features=TierFeatures(
            cloud_storage=True,
            sleep_tracking=True,
            morning_routines=True,
            unlimited_entries=True,
        ),
    ),
    SubscriptionTier.ELITE_PERFORMANCE: Entitlement(
        tier=SubscriptionTier.ELITE_PERFORMANCE,
        has_remote_access=True,
        quotas=StorageQuotas(),
        features=TierFeatures(
            cloud_storage=True,
            sleep_tracking=True,
            morning_routines=True,
            unlimited_entries=True,
            product_discounts=True,
        ),
    ),
}

_missing_tiers = set(SubscriptionTier) - set(TIER_ENTITLEMENTS)
if _missing_tiers:
    raise RuntimeError(
        f"TIER_ENTITLEMENTS is missing tiers: {sorted(t.value for t in _missing_tiers)}"
    )


def parse_tier(value: Union[SubscriptionTier, str, None]) -> SubscriptionTier:
    """Coerce a raw tier value, falling back to free for anything unknown."""
    if isinstance(value, SubscriptionTier):
        return value
    try:
        return SubscriptionTier(value)
    except ValueError:
        return SubscriptionTier.FREE


def resolve_entitlement(tier: Union[SubscriptionTier, str, None]) -> Entitlement:
    """Map a tier to its entitlement. Unknown tiers never resolve to a paid capability."""
    return TIER_ENTITLEMENTS[parse_tier(tier)]


def crosses_remote_boundary(
    old_tier: SubscriptionTier,
    new_tier: SubscriptionTier,
) -> bool:
    """True when a tier change grants remote access that was absent before."""
    return (
        resolve_entitlement(new_tier).has_remote_access
        and not resolve_entitlement(old_tier).has_remote_access
    )
