"""
Payments Infrastructure Module

Stripe webhook verification and subscription management.
"""

from app.infrastructure.payments.stripe_service import StripeService, StripeServiceError

__all__ = ["StripeService", "StripeServiceError"]
