"""
Test configuration and fixtures for SleepVision.

Provides shared fixtures for unit and integration tests. Both stores run
against temporary SQLite files through aiosqlite.
"""

import pytest
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from app.api.dependencies import get_token_claims
from app.config.settings import Settings
from app.domain.records import EntryRecord, RoutineRecord, RoutineStep, ScheduleItem, ScheduleRecord
from app.infrastructure.db.database import DatabaseManager
from app.infrastructure.db.models import LOCAL_TABLES, REMOTE_TABLES
from app.infrastructure.db.repositories import SubscriptionRepository
from app.infrastructure.services.components import StorageComponents, build_components
from app.infrastructure.services.subscription_tracker import SubscriptionTracker
from app.infrastructure.storage.local_cache import LocalBoundedCache
from app.infrastructure.storage.remote_store import RemoteStoreAdapter


TEST_JWT_SECRET = "test-jwt-secret-with-at-least-32-bytes!"


# =============================================================================
# Settings
# =============================================================================

@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings isolated from the developer's .env file."""
    return Settings(
        _env_file=None,
        environment="testing",
        supabase_url="https://testproject.supabase.co",
        supabase_jwt_secret=TEST_JWT_SECRET,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'remote.db'}",
        local_cache_url=f"sqlite+aiosqlite:///{tmp_path / 'local.db'}",
        stripe_webhook_secret="whsec_test",
        stripe_price_id_sleep_focused="price_sleep",
        stripe_price_id_full_transformation="price_full",
        stripe_price_id_elite_performance="price_elite",
        retry_base_delay=0,
        retry_max_delay=0,
    )


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Get the FastAPI application."""
    from app.main import app
    return app


@pytest.fixture
def client(app):
    """Get synchronous test client (no lifespan, no storage components)."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Get async test client sharing the test's event loop."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def remote_db(tmp_path) -> AsyncGenerator[DatabaseManager, None]:
    """Remote store schema on a temporary SQLite file."""
    db = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'remote.db'}")
    await db.create_tables(REMOTE_TABLES)
    yield db
    await db.close()


@pytest.fixture
async def local_db(tmp_path) -> AsyncGenerator[DatabaseManager, None]:
    """Local cache schema on a temporary SQLite file."""
    db = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'local.db'}")
    await db.create_tables(LOCAL_TABLES)
    yield db
    await db.close()


@pytest.fixture
def local_cache(local_db) -> LocalBoundedCache:
    return LocalBoundedCache(local_db)


@pytest.fixture
def remote_store(remote_db) -> RemoteStoreAdapter:
    return RemoteStoreAdapter(remote_db, max_retries=3, base_delay=0, max_delay=0)


@pytest.fixture
def tracker() -> SubscriptionTracker:
    """In-memory tracker (no durable writes)."""
    return SubscriptionTracker(base_delay=0, max_delay=0)


@pytest.fixture
def subscription_repo(remote_db) -> SubscriptionRepository:
    return SubscriptionRepository(remote_db)


@pytest.fixture
async def components(app, test_settings, remote_db, local_db) -> AsyncGenerator[StorageComponents, None]:
    """Fully wired storage layer attached to the app, as the lifespan would."""
    built = build_components(test_settings, remote_db=remote_db, local_db=local_db)
    await built.startup()
    app.state.components = built
    yield built
    await built.tracker.aclose()
    del app.state.components


@pytest.fixture
def auth_as(app):
    """Authenticate requests as the given user without signing tokens."""

    def _login(user_id: str, email: Optional[str] = None) -> None:
        app.dependency_overrides[get_token_claims] = lambda: {"sub": user_id, "email": email}

    yield _login
    app.dependency_overrides.pop(get_token_claims, None)


# =============================================================================
# Failure Injection
# =============================================================================

def connection_refused() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("connection refused"))


class FlakyDatabase:
    """
    Wraps a DatabaseManager and fails the next `failures` sessions.

    `failures=None` fails every session.
    """

    def __init__(
        self,
        db: DatabaseManager,
        failures: Optional[int] = None,
        error_factory: Callable[[], Exception] = connection_refused,
    ):
        self._db = db
        self.failures = failures
        self._error_factory = error_factory
        self.attempts = 0

    @asynccontextmanager
    async def session(self):
        self.attempts += 1
        if self.failures is None or self.failures > 0:
            if self.failures is not None:
                self.failures -= 1
            raise self._error_factory()
        async with self._db.session() as session:
            yield session


@pytest.fixture
def flaky_remote_db(remote_db) -> FlakyDatabase:
    """Remote database that is unreachable until `failures` is set to 0."""
    return FlakyDatabase(remote_db)


# =============================================================================
# Sample Data Fixtures
# =============================================================================

def make_entry(n: int = 1) -> EntryRecord:
    return EntryRecord(
        date=f"2026-01-{n:02d}",
        bedtime="22:30",
        wake_time="06:30",
        sleep_quality=7,
        mood="rested",
        notes=f"night {n}",
    )


def make_schedule(title: str = "Wind-down plan", active: bool = False) -> ScheduleRecord:
    return ScheduleRecord(
        title=title,
        active=active,
        schedule=[
            ScheduleItem(time="21:30", activity="Dim the lights", category="evening"),
            ScheduleItem(time="22:30", activity="Lights out", category="night"),
            ScheduleItem(time="06:30", activity="Sunlight walk", category="morning"),
        ],
        questionnaire_data={"chronotype": "bear"},
    )


def make_routine(title: str = "Morning kickstart", active: bool = False) -> RoutineRecord:
    return RoutineRecord(
        title=title,
        active=active,
        steps=[
            RoutineStep(time="06:30", activity="Hydrate", duration_minutes=2),
            RoutineStep(time="06:35", activity="Stretch", duration_minutes=10),
        ],
    )
