"""
Subscription API Routes

Subscription status and cancellation. Tier changes themselves arrive through
the Stripe webhook.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import (
    CurrentUserId,
    StripeServiceDep,
    TrackerDep,
    get_current_identity,
)
from app.domain.subscription import (
    SubscriptionStatus,
    SubscriptionStatusResponse,
    UserIdentity,
    resolve_entitlement,
)
from app.infrastructure.payments.stripe_service import StripeServiceError


logger = logging.getLogger(__name__)

router = APIRouter()


def to_response(subscription: SubscriptionStatus) -> SubscriptionStatusResponse:
    entitlement = resolve_entitlement(subscription.effective_tier)
    return SubscriptionStatusResponse(
        tier=subscription.effective_tier,
        is_active=subscription.is_active,
        has_remote_access=entitlement.has_remote_access,
        consecutive_payment_failures=subscription.consecutive_payment_failures,
        last_payment_at=subscription.last_payment_at,
        cancel_at_period_end=subscription.cancel_at_period_end,
    )


@router.get("/subscriptions/status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    tracker: TrackerDep,
    identity: UserIdentity = Depends(get_current_identity),
):
    """
    Get the current user's subscription status.

    Unknown users are on the free tier.
    """
    subscription = await tracker.register_user(identity)
    return to_response(subscription)


@router.post("/subscriptions/cancel", response_model=SubscriptionStatusResponse)
async def cancel_subscription(
    user_id: CurrentUserId,
    tracker: TrackerDep,
    stripe_service: StripeServiceDep,
):
    """
    Cancel the current subscription immediately.

    Stripe billing is stopped first; the user then drops to the free tier.
    """
    current = await tracker.get_status(user_id)

    if current.stripe_customer_id:
        try:
            await stripe_service.cancel_customer_subscriptions(current.stripe_customer_id)
        except StripeServiceError as e:
            logger.error(f"Stripe cancellation failed for {user_id}: {e}")
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Failed to cancel subscription with the payment provider",
            )

    subscription = await tracker.cancel(user_id)
    return to_response(subscription)
