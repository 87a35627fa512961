"""
Subscription Tracker

Owns each user's SubscriptionStatus and applies payment events to it.

Production features:
- In-memory status map, lazily hydrated from the subscriptions table
- Write-through persistence with backoff retry tasks on failure
- TierChanged fan-out to async listeners (the Migration Orchestrator)
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from app.domain.events import (
    PaymentEvent,
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionCanceled,
    TierChanged,
)
from app.domain.interfaces import TierChangedListener
from app.domain.subscription import (
    MAX_CONSECUTIVE_PAYMENT_FAILURES,
    SubscriptionStatus,
    SubscriptionTier,
    UserIdentity,
    parse_tier,
)
from app.infrastructure.db.models.base import utcnow
from app.infrastructure.db.repositories.subscription_repository import SubscriptionRepository
from app.infrastructure.exceptions import SleepVisionError


logger = logging.getLogger(__name__)

_PERSISTENCE_ERRORS = (SQLAlchemyError, OSError, TimeoutError, SleepVisionError)


class SubscriptionTracker:
    """
    Single writer of subscription state.

    Mutations are applied in memory first. A failed durable write never
    reaches the caller; it is retried in the background instead.
    """

    def __init__(
        self,
        repository: Optional[SubscriptionRepository] = None,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 10.0,
    ):
        self._repo = repository
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay

        self._statuses: dict[str, SubscriptionStatus] = {}
        self._listeners: list[TierChangedListener] = []
        self._retry_tasks: dict[str, asyncio.Task] = {}

    def subscribe(self, listener: TierChangedListener) -> None:
        """Register an async TierChanged listener."""
        self._listeners.append(listener)

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_status(self, user_id: str) -> SubscriptionStatus:
        """
        Current status for a user.

        Unknown users and unreadable rows resolve to a free status so that a
        storage outage never grants a paid capability.
        """
        cached = self._statuses.get(user_id)
        if cached is not None:
            return cached.model_copy()

        stored: Optional[SubscriptionStatus] = None
        if self._repo is not None:
            try:
                stored = await self._repo.get_by_user_id(user_id)
            except _PERSISTENCE_ERRORS as e:
                logger.error(f"Failed to load subscription for {user_id}, assuming free: {e}")
                return SubscriptionStatus(user_id=user_id)

        # A mutation committed while the row was loading is newer than the row
        status = self._statuses.setdefault(
            user_id,
            stored or SubscriptionStatus(user_id=user_id, created_at=utcnow()),
        )
        return status.model_copy()

    # =========================================================================
    # Commands
    # =========================================================================

    async def register_user(self, identity: UserIdentity) -> SubscriptionStatus:
        """Record identity details captured at first sign-in."""
        status = await self.get_status(identity.user_id)
        if identity.email and status.email != identity.email:
            updated = status.model_copy(update={"email": identity.email})
            await self._commit(status, updated)
            return updated
        return status

    async def apply_payment_success(
        self,
        user_id: str,
        tier: SubscriptionTier,
        amount: int = 0,
        stripe_customer_id: Optional[str] = None,
    ) -> SubscriptionStatus:
        """Activate `tier` and reset the failure counter."""
        before = await self.get_status(user_id)
        after = before.model_copy(update={
            "tier": parse_tier(tier),
            "is_active": True,
            "consecutive_payment_failures": 0,
            "cancel_at_period_end": False,
            "last_payment_at": utcnow(),
            "total_paid": before.total_paid + max(amount, 0),
            "payment_count": before.payment_count + 1,
            "stripe_customer_id": stripe_customer_id or before.stripe_customer_id,
        })

        logger.info(f"Payment succeeded for {user_id}: tier={after.tier.value}, amount={amount}")
        await self._commit(before, after)
        return after

    async def apply_payment_failure(
        self,
        user_id: str,
        reason: Optional[str] = None,
    ) -> SubscriptionStatus:
        """
        Count a failed payment; the third consecutive one downgrades to free.

        A user already at the free floor is left untouched.
        """
        before = await self.get_status(user_id)
        if before.effective_tier == SubscriptionTier.FREE:
            logger.debug(f"Payment failure for {user_id} ignored: already on free tier")
            return before

        failures = before.consecutive_payment_failures + 1
        update = {"consecutive_payment_failures": failures}
        if failures >= MAX_CONSECUTIVE_PAYMENT_FAILURES:
            update.update(tier=SubscriptionTier.FREE, is_active=False)
            logger.warning(
                f"User {user_id} downgraded to free after {failures} failed payments"
            )
        else:
            logger.warning(
                f"Payment failed for {user_id} ({failures}/{MAX_CONSECUTIVE_PAYMENT_FAILURES}): "
                f"{reason or 'no reason given'}"
            )

        after = before.model_copy(update=update)
        await self._commit(before, after)
        return after

    async def cancel(self, user_id: str) -> SubscriptionStatus:
        """Drop to free immediately."""
        before = await self.get_status(user_id)
        after = before.model_copy(update={
            "tier": SubscriptionTier.FREE,
            "is_active": False,
            "cancel_at_period_end": False,
        })
        logger.info(f"Subscription canceled for {user_id}")
        await self._commit(before, after)
        return after

    async def handle(self, event: PaymentEvent) -> SubscriptionStatus:
        """Dispatch an inbound payment-processor event."""
        if isinstance(event, PaymentSucceeded):
            return await self.apply_payment_success(
                event.user_id,
                event.tier,
                event.amount,
                stripe_customer_id=event.stripe_customer_id,
            )
        if isinstance(event, PaymentFailed):
            return await self.apply_payment_failure(event.user_id, event.reason)
        if isinstance(event, SubscriptionCanceled):
            return await self.cancel(event.user_id)
        raise TypeError(f"Unsupported payment event: {type(event).__name__}")

    # =========================================================================
    # Persistence & Events
    # =========================================================================

    async def _commit(self, before: SubscriptionStatus, after: SubscriptionStatus) -> None:
        after.updated_at = utcnow()
        self._statuses[after.user_id] = after

        await self._persist(after.user_id)

        if before.effective_tier != after.effective_tier:
            await self._emit(TierChanged(
                user_id=after.user_id,
                old_tier=before.effective_tier,
                new_tier=after.effective_tier,
            ))

    async def _persist(self, user_id: str) -> None:
        if self._repo is None:
            return
        if user_id in self._retry_tasks:
            # Pending retry will pick up the latest in-memory status
            return

        try:
            await self._repo.upsert(self._statuses[user_id])
        except _PERSISTENCE_ERRORS as e:
            logger.error(f"Failed to persist subscription for {user_id}, scheduling retry: {e}")
            task = asyncio.create_task(self._retry_persist(user_id))
            self._retry_tasks[user_id] = task
            task.add_done_callback(lambda _: self._retry_tasks.pop(user_id, None))

    async def _retry_persist(self, user_id: str) -> None:
        attempt = 1
        while attempt <= self._max_retries:
            delay = min(self._base_delay * (2 ** (attempt - 1)), self._max_delay)
            await asyncio.sleep(delay)
            written = self._statuses[user_id]
            try:
                await self._repo.upsert(written)
            except _PERSISTENCE_ERRORS as e:
                logger.warning(
                    f"Subscription persist retry {attempt}/{self._max_retries} failed for {user_id}: {e}"
                )
                attempt += 1
                continue

            logger.info(f"Persisted subscription for {user_id} on retry {attempt}")
            if self._statuses[user_id] is written:
                return
            # Committed during the upsert and skipped by _persist; write it too
            logger.debug(f"Subscription for {user_id} changed during retry, persisting again")
            attempt = 1

        logger.error(
            f"Giving up persisting subscription for {user_id} after {self._max_retries} retries"
        )

    async def _emit(self, event: TierChanged) -> None:
        logger.info(
            f"Tier changed for {event.user_id}: {event.old_tier.value} -> {event.new_tier.value}"
        )
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:
                logger.exception(f"TierChanged listener failed for {event.user_id}")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def pending_retries(self) -> int:
        return len(self._retry_tasks)

    async def drain(self) -> None:
        """Wait for every scheduled persistence retry to finish."""
        while self._retry_tasks:
            await asyncio.gather(*list(self._retry_tasks.values()))

    async def aclose(self) -> None:
        """Cancel outstanding persistence retries."""
        tasks = list(self._retry_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._retry_tasks.clear()
