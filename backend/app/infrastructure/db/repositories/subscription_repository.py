"""
Subscription Repository

Data access layer for subscription persistence.
Follows Repository pattern for Clean Architecture.
"""

import logging
from typing import Optional

from sqlmodel import select

from app.domain.subscription import SubscriptionStatus, parse_tier
from app.infrastructure.db.database import DatabaseManager
from app.infrastructure.db.models.base import as_utc, utcnow
from app.infrastructure.db.models.subscription import SubscriptionModel


logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """
    Repository for subscription data access.

    Implements reads and upserts with domain model mapping.
    """

    def __init__(self, db: DatabaseManager):
        self._db = db

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_user_id(self, user_id: str) -> Optional[SubscriptionStatus]:
        """
        Get subscription by user ID.

        Args:
            user_id: Opaque user ID

        Returns:
            SubscriptionStatus domain model or None
        """
        async with self._db.session() as session:
            model = await session.get(SubscriptionModel, user_id)
            if model:
                return self._to_domain(model)
            return None

    async def get_by_stripe_customer_id(
        self,
        stripe_customer_id: str,
    ) -> Optional[SubscriptionStatus]:
        """
        Get subscription by Stripe customer ID.

        Args:
            stripe_customer_id: Stripe customer ID

        Returns:
            SubscriptionStatus domain model or None
        """
        async with self._db.session() as session:
            statement = select(SubscriptionModel).where(
                SubscriptionModel.stripe_customer_id == stripe_customer_id
            )
            result = await session.execute(statement)
            model = result.scalars().first()

            if model:
                return self._to_domain(model)

            return None

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def upsert(self, status: SubscriptionStatus) -> SubscriptionStatus:
        """
        Create or update the subscription row for a user.

        Args:
            status: SubscriptionStatus domain model

        Returns:
            Stored status with timestamps
        """
        async with self._db.session() as session:
            now = utcnow()
            model = await session.get(SubscriptionModel, status.user_id)

            if model is None:
                model = SubscriptionModel(user_id=status.user_id, created_at=now)
                session.add(model)

            model.email = status.email
            model.stripe_customer_id = status.stripe_customer_id
            model.tier = status.tier.value
            model.is_active = status.is_active
            model.cancel_at_period_end = status.cancel_at_period_end
            model.consecutive_payment_failures = status.consecutive_payment_failures
            model.last_payment_at = status.last_payment_at
            model.total_paid = status.total_paid
            model.payment_count = status.payment_count
            model.updated_at = now

            await session.flush()
            await session.refresh(model)

            logger.debug(f"Upserted subscription for user {status.user_id}")
            return self._to_domain(model)

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _to_domain(self, model: SubscriptionModel) -> SubscriptionStatus:
        """Convert database model to domain entity."""
        return SubscriptionStatus(
            user_id=model.user_id,
            email=model.email,
            tier=parse_tier(model.tier),
            is_active=bool(model.is_active),
            consecutive_payment_failures=model.consecutive_payment_failures or 0,
            last_payment_at=as_utc(model.last_payment_at),
            total_paid=model.total_paid or 0,
            payment_count=model.payment_count or 0,
            stripe_customer_id=model.stripe_customer_id,
            cancel_at_period_end=bool(model.cancel_at_period_end),
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
        )
