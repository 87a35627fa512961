"""
Webhook Event Repository

DB-backed idempotency for payment-processor webhooks (survives restarts).
"""

from sqlalchemy import text

from app.infrastructure.db.database import DatabaseManager


class WebhookEventRepository:
    """Tracks which Stripe event ids were already applied."""

    def __init__(self, db: DatabaseManager):
        self._db = db

    async def is_processed(self, event_id: str) -> bool:
        """Check if a webhook event has already been processed."""
        async with self._db.session() as session:
            result = await session.execute(
                text("SELECT 1 FROM processed_webhook_events WHERE event_id = :eid"),
                {"eid": event_id},
            )
            return result.scalar_one_or_none() is not None

    async def mark_processed(self, event_id: str, event_type: str) -> None:
        """Record a processed webhook event."""
        async with self._db.session() as session:
            await session.execute(
                text(
                    "INSERT INTO processed_webhook_events (event_id, event_type, processed_at) "
                    "VALUES (:eid, :etype, CURRENT_TIMESTAMP) ON CONFLICT (event_id) DO NOTHING"
                ),
                {"eid": event_id, "etype": event_type},
            )
