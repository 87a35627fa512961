"""
Stripe Payment Service

Infrastructure service for the Stripe side of the subscription lifecycle.
Checkout itself is hosted by Stripe; this service only verifies inbound
webhooks, maps prices back to tiers and cancels a customer's subscriptions.

Following stripe-integration skill patterns:
- Hosted Checkout for minimal PCI burden
- Always verify webhook signatures
- Idempotent webhook handling (see api/routes/webhooks.py)
"""

import logging
from typing import Optional
import stripe
from stripe import StripeError

from app.config.settings import Settings
from app.domain.subscription import SubscriptionTier, parse_tier


logger = logging.getLogger(__name__)


class StripeServiceError(Exception):
    """Base exception for Stripe service errors."""
    pass


class StripeService:
    """
    Stripe payment processing service.

    Stateless apart from the configured keys.
    """

    def __init__(self, settings: Settings):
        """Initialize Stripe with API key from settings."""
        self._api_key = settings.stripe_secret_key
        self._webhook_secret = settings.stripe_webhook_secret
        self._price_tiers = settings.stripe_price_tiers

        if self._api_key:
            stripe.api_key = self._api_key

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    # =========================================================================
    # Price Mapping
    # =========================================================================

    def tier_for_price(self, price_id: Optional[str]) -> Optional[SubscriptionTier]:
        """Resolve a Stripe price ID to a tier. None when the price is unknown."""
        if not price_id or price_id not in self._price_tiers:
            return None
        return parse_tier(self._price_tiers[price_id])

    # =========================================================================
    # Subscription Management
    # =========================================================================

    async def cancel_customer_subscriptions(self, customer_id: str) -> int:
        """
        Cancel every active subscription of a customer immediately.

        Args:
            customer_id: Stripe customer ID

        Returns:
            Number of subscriptions cancelled
        """
        if not self.is_configured:
            logger.warning("Stripe is not configured; skipping subscription cancellation")
            return 0

        try:
            subscriptions = stripe.Subscription.list(customer=customer_id, status="active")
            cancelled = 0
            for subscription in subscriptions.auto_paging_iter():
                stripe.Subscription.cancel(subscription.id)
                cancelled += 1

            logger.info(f"Cancelled {cancelled} subscription(s) for customer {customer_id}")
            return cancelled

        except StripeError as e:
            logger.error(f"Failed to cancel subscriptions for {customer_id}: {e}")
            raise StripeServiceError(f"Failed to cancel: {e.user_message}")

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: str,
    ) -> stripe.Event:
        """
        Verify webhook signature and construct event.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header

        Returns:
            stripe.Event if valid

        Raises:
            StripeServiceError if signature invalid
        """
        if not self._webhook_secret:
            raise StripeServiceError("Webhook secret is not configured")

        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self._webhook_secret,
            )
            return event

        except ValueError as e:
            raise StripeServiceError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise StripeServiceError(f"Invalid signature: {e}")
