"""
Component Wiring

Builds the persistence layer explicitly from settings. No module-level
singletons: the FastAPI lifespan, scripts and tests each construct their own
StorageComponents.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.config.settings import Settings
from app.infrastructure.db.database import (
    DatabaseManager,
    build_local_db_manager,
    build_remote_db_manager,
)
from app.infrastructure.db.repositories import SubscriptionRepository, WebhookEventRepository
from app.infrastructure.payments.stripe_service import StripeService
from app.infrastructure.services.migration_orchestrator import MigrationOrchestrator
from app.infrastructure.services.storage_router import StorageRouter
from app.infrastructure.services.subscription_tracker import SubscriptionTracker
from app.infrastructure.storage.local_cache import LocalBoundedCache
from app.infrastructure.storage.remote_store import RemoteStoreAdapter


logger = logging.getLogger(__name__)


@dataclass
class StorageComponents:
    """Everything the API layer needs, already wired together."""
    settings: Settings
    remote_db: DatabaseManager
    local_db: DatabaseManager
    tracker: SubscriptionTracker
    local_cache: LocalBoundedCache
    remote_store: RemoteStoreAdapter
    router: StorageRouter
    orchestrator: MigrationOrchestrator
    webhook_events: WebhookEventRepository
    subscriptions: SubscriptionRepository
    stripe: StripeService

    async def startup(self) -> None:
        await self.local_cache.initialize()
        logger.info("Storage components started")

    async def shutdown(self) -> None:
        await self.tracker.aclose()
        await self.remote_db.close()
        await self.local_db.close()
        logger.info("Storage components stopped")


def build_components(
    settings: Settings,
    remote_db: Optional[DatabaseManager] = None,
    local_db: Optional[DatabaseManager] = None,
) -> StorageComponents:
    """Construct and connect the tracker, stores, router and orchestrator."""
    remote_db = remote_db or build_remote_db_manager(settings)
    local_db = local_db or build_local_db_manager(settings)

    subscriptions = SubscriptionRepository(remote_db)
    tracker = SubscriptionTracker(
        subscriptions,
        max_retries=settings.max_retries,
        base_delay=settings.retry_base_delay,
        max_delay=settings.retry_max_delay,
    )
    local_cache = LocalBoundedCache(local_db)
    remote_store = RemoteStoreAdapter.from_settings(remote_db, settings)

    router = StorageRouter(
        tracker,
        local_cache,
        remote_store,
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
    )
    orchestrator = MigrationOrchestrator(local_cache, remote_store)
    tracker.subscribe(orchestrator.handle_tier_changed)

    return StorageComponents(
        settings=settings,
        remote_db=remote_db,
        local_db=local_db,
        tracker=tracker,
        local_cache=local_cache,
        remote_store=remote_store,
        router=router,
        orchestrator=orchestrator,
        webhook_events=WebhookEventRepository(remote_db),
        subscriptions=subscriptions,
        stripe=StripeService(settings),
    )
