"""
Stripe Webhook Handler

Translates Stripe webhook events into payment events for the Subscription
Tracker. Implements idempotent event processing backed by the database
(survives restarts).

Critical Events:
- checkout.session.completed: Activate the purchased tier
- invoice.payment_succeeded: Renewal, resets the failure counter
- invoice.payment_failed: Counts towards the automatic downgrade
- customer.subscription.deleted: Downgrade to free tier
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Request, HTTPException, status

from app.api.dependencies import (
    StripeServiceDep,
    SubscriptionRepoDep,
    TrackerDep,
    WebhookEventRepoDep,
)
from app.domain.events import (
    PaymentEvent,
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionCanceled,
)
from app.domain.subscription import SubscriptionTier
from app.infrastructure.db.repositories import SubscriptionRepository
from app.infrastructure.payments.stripe_service import StripeService, StripeServiceError


logger = logging.getLogger(__name__)

router = APIRouter()

# Invoice raised by the checkout that created the subscription
FIRST_INVOICE_BILLING_REASON = "subscription_create"


# =============================================================================
# Webhook Endpoint
# =============================================================================

@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_service: StripeServiceDep,
    tracker: TrackerDep,
    processed_events: WebhookEventRepoDep,
    subscriptions: SubscriptionRepoDep,
):
    """
    Handle Stripe webhook events.

    Verifies signature and processes subscription lifecycle events.
    Returns 200 OK to acknowledge receipt (Stripe will retry on failure).
    """
    # Get raw payload and signature
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe signature"
        )

    # Verify signature
    try:
        stripe_service.verify_webhook_signature(payload, signature)
    except StripeServiceError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature"
        )

    event = json.loads(payload)
    event_id = event.get("id")
    event_type = event.get("type")

    # Idempotency check
    if await processed_events.is_processed(event_id):
        logger.info(f"Event {event_id} already processed, skipping")
        return {"status": "already_processed"}

    logger.info(f"Processing webhook event: {event_type} ({event_id})")

    try:
        payment_event = await to_payment_event(
            event_type,
            event.get("data", {}).get("object", {}),
            stripe_service,
            subscriptions,
        )

        if payment_event is None:
            logger.debug(f"Unhandled event type: {event_type}")
        else:
            await tracker.handle(payment_event)

        # Mark as processed (DB-backed)
        await processed_events.mark_processed(event_id, event_type)

        return {"status": "success"}

    except Exception as e:
        logger.error(f"Error processing webhook {event_type}: {e}")
        # Return 200 to prevent Stripe retries for non-recoverable errors
        return {"status": "error", "message": str(e)}


# =============================================================================
# Event Mapping
# =============================================================================

async def to_payment_event(
    event_type: str,
    data: dict,
    stripe_service: StripeService,
    subscriptions: SubscriptionRepository,
) -> Optional[PaymentEvent]:
    """Map a Stripe event object to a tracker event. None when not relevant."""
    if event_type == "checkout.session.completed":
        return checkout_completed(data, stripe_service)

    if event_type == "invoice.payment_succeeded":
        return await invoice_payment_succeeded(data, stripe_service, subscriptions)

    if event_type == "invoice.payment_failed":
        user_id = await resolve_user_id(data, subscriptions)
        if not user_id:
            return None
        reason = (data.get("last_finalization_error") or {}).get("message")
        return PaymentFailed(user_id=user_id, reason=reason or "invoice.payment_failed")

    if event_type == "customer.subscription.deleted":
        user_id = await resolve_user_id(data, subscriptions)
        if not user_id:
            return None
        return SubscriptionCanceled(user_id=user_id)

    return None


def checkout_completed(session: dict, stripe_service: StripeService) -> Optional[PaymentSucceeded]:
    """
    Handle successful checkout session completion.

    Tier comes from session metadata, falling back to the purchased price.
    """
    metadata = session.get("metadata") or {}
    user_id = metadata.get("user_id") or session.get("client_reference_id")

    if not user_id:
        logger.error("Checkout completed without user_id in metadata")
        return None

    tier = tier_from_metadata(metadata) or stripe_service.tier_for_price(metadata.get("price_id"))
    if tier is None:
        logger.error(f"Checkout completed for {user_id} without a recognizable tier")
        return None

    return PaymentSucceeded(
        user_id=user_id,
        tier=tier,
        amount=session.get("amount_total") or 0,
        stripe_customer_id=session.get("customer"),
    )


async def invoice_payment_succeeded(
    invoice: dict,
    stripe_service: StripeService,
    subscriptions: SubscriptionRepository,
) -> Optional[PaymentSucceeded]:
    """
    Handle successful invoice payment (renewals).

    The first invoice of a subscription is skipped: checkout.session.completed
    already applied that payment. Tier comes from the invoice line price, then
    metadata, then the tier the customer already has.
    """
    if invoice.get("billing_reason") == FIRST_INVOICE_BILLING_REASON:
        logger.debug(f"Skipping first subscription invoice {invoice.get('id')}; applied at checkout")
        return None

    user_id = await resolve_user_id(invoice, subscriptions)
    if not user_id:
        return None

    tier = stripe_service.tier_for_price(invoice_price_id(invoice))
    tier = tier or tier_from_metadata(invoice_metadata(invoice))

    if tier is None:
        current = await subscriptions.get_by_user_id(user_id)
        if current and current.tier != SubscriptionTier.FREE:
            tier = current.tier

    if tier is None:
        logger.warning(f"Invoice paid for {user_id} but no tier could be resolved")
        return None

    return PaymentSucceeded(
        user_id=user_id,
        tier=tier,
        amount=invoice.get("amount_paid") or 0,
        stripe_customer_id=invoice.get("customer"),
    )


# =============================================================================
# Helpers
# =============================================================================

def tier_from_metadata(metadata: dict) -> Optional[SubscriptionTier]:
    try:
        return SubscriptionTier(metadata.get("tier"))
    except ValueError:
        return None


def invoice_metadata(invoice: dict) -> dict:
    details = invoice.get("subscription_details") or {}
    return details.get("metadata") or invoice.get("metadata") or {}


def invoice_price_id(invoice: dict) -> Optional[str]:
    lines = (invoice.get("lines") or {}).get("data") or []
    if not lines:
        return None
    line = lines[0]
    price = line.get("price")
    if isinstance(price, dict) and price.get("id"):
        return price["id"]
    # Newer API versions nest the price under pricing.price_details
    return ((line.get("pricing") or {}).get("price_details") or {}).get("price")


async def resolve_user_id(data: dict, subscriptions: SubscriptionRepository) -> Optional[str]:
    """User from event metadata, otherwise via the stored Stripe customer ID."""
    user_id = invoice_metadata(data).get("user_id")
    if user_id:
        return user_id

    customer_id = data.get("customer")
    if not customer_id:
        return None

    subscription = await subscriptions.get_by_stripe_customer_id(customer_id)
    if subscription is None:
        logger.warning(f"No subscription found for Stripe customer {customer_id}")
        return None
    return subscription.user_id
