"""
Unit tests for the Storage Router.

Uses the real cache and remote adapter on SQLite; remote outages come from
FlakyDatabase.
"""

import pytest
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

from sqlalchemy.exc import StatementError

from app.domain.records import RecordScope, ResourceKind, UserPreferences
from app.domain.storage import Degraded, RemoteFailure, SaveState
from app.domain.subscription import SubscriptionTier
from app.infrastructure.exceptions import (
    LocalStorageFullError,
    NotFoundError,
    RemoteStoreError,
    RemoteUnavailableError,
    ValidationError,
)
from app.infrastructure.services.storage_router import StorageRouter, quota_for
from app.infrastructure.storage.remote_store import RemoteStoreAdapter

from conftest import make_entry, make_routine, make_schedule


USER = "user-router"


@pytest.fixture
def router(tracker, local_cache, remote_store) -> StorageRouter:
    return StorageRouter(tracker, local_cache, remote_store, default_page_size=20, max_page_size=50)


@pytest.fixture
def degraded_router(tracker, local_cache, flaky_remote_db) -> StorageRouter:
    remote = RemoteStoreAdapter(flaky_remote_db, max_retries=2, base_delay=0)
    return StorageRouter(tracker, local_cache, remote)


class TestFreeUser:
    """No remote access: everything lives in the bounded local cache."""

    @pytest.mark.asyncio
    async def test_four_entries_with_quota_three_keep_newest(self, router):
        for n in range(1, 5):
            result = await router.save(USER, ResourceKind.ENTRY, make_entry(n))
            assert result.state == SaveState.DONE
            assert result.trace == [
                SaveState.START,
                SaveState.NO_REMOTE_ACCESS,
                SaveState.LOCAL_WRITE,
                SaveState.DONE,
            ]

        page = await router.load(USER, ResourceKind.ENTRY)

        assert [r.date for r in page.records] == ["2026-01-04", "2026-01-03", "2026-01-02"]

    @pytest.mark.asyncio
    async def test_save_returns_local_ref(self, router):
        result = await router.save(USER, ResourceKind.SCHEDULE, make_schedule())

        assert result.ref.scope == RecordScope.LOCAL
        assert result.ref.id.startswith("local_")
        assert result.fell_back is False

    @pytest.mark.asyncio
    async def test_local_pagination_uses_offsets(self, router):
        for n in range(1, 4):
            await router.save(USER, ResourceKind.ENTRY, make_entry(n))

        first = await router.load(USER, ResourceKind.ENTRY, page_size=2)
        second = await router.load(USER, ResourceKind.ENTRY, page_size=2, cursor=first.next_cursor)

        assert [r.date for r in first.records] == ["2026-01-03", "2026-01-02"]
        assert [r.date for r in second.records] == ["2026-01-01"]
        assert second.next_cursor is None

    @pytest.mark.asyncio
    async def test_local_cursor_must_be_numeric(self, router):
        with pytest.raises(ValidationError):
            await router.load(USER, ResourceKind.ENTRY, cursor="abc")

    @pytest.mark.asyncio
    async def test_wrong_record_type_is_rejected(self, router):
        with pytest.raises(ValidationError):
            await router.save(USER, ResourceKind.ENTRY, make_schedule())

    @pytest.mark.asyncio
    async def test_local_write_failure_is_reported_not_raised(self, tracker, remote_store):
        local = AsyncMock()
        local.write.side_effect = LocalStorageFullError("Local storage is full", operation="write")
        router = StorageRouter(tracker, local, remote_store)

        result = await router.save(USER, ResourceKind.ENTRY, make_entry(1))

        assert result.state == SaveState.FAILED
        assert result.ref is None
        assert result.trace[-1] == SaveState.FAILED

    @pytest.mark.asyncio
    async def test_local_statement_error_is_reported_not_raised(self, tracker, local_cache, local_db, remote_store):
        @asynccontextmanager
        async def rejecting_session():
            raise StatementError("Datetime values must have timezone information", "INSERT", {}, None)
            yield  # pragma: no cover

        router = StorageRouter(tracker, local_cache, remote_store)

        with patch.object(local_db, "session", rejecting_session):
            result = await router.save(USER, ResourceKind.ENTRY, make_entry(1))

        assert result.state == SaveState.FAILED
        assert result.ref is None


class TestEntitledUser:
    """Remote access: records go to the document store."""

    @pytest.fixture(autouse=True)
    async def upgrade(self, tracker):
        await tracker.apply_payment_success(USER, SubscriptionTier.SLEEP_FOCUSED)

    @pytest.mark.asyncio
    async def test_save_goes_remote(self, router, local_cache):
        result = await router.save(USER, ResourceKind.ENTRY, make_entry(1))

        assert result.state == SaveState.DONE
        assert result.ref.scope == RecordScope.REMOTE
        assert result.trace == [
            SaveState.START,
            SaveState.REMOTE_ATTEMPT,
            SaveState.REMOTE_OK,
            SaveState.DONE,
        ]
        assert await local_cache.read(USER, ResourceKind.ENTRY) == []

    @pytest.mark.asyncio
    async def test_load_reads_remote_newest_first(self, router):
        for n in range(1, 5):
            await router.save(USER, ResourceKind.ENTRY, make_entry(n))

        page = await router.load(USER, ResourceKind.ENTRY, page_size=3)

        assert [r.date for r in page.records] == ["2026-01-04", "2026-01-03", "2026-01-02"]
        assert page.next_cursor is not None

    @pytest.mark.asyncio
    async def test_page_size_is_capped(self, router):
        for n in range(1, 4):
            await router.save(USER, ResourceKind.ENTRY, make_entry(n))

        page = await router.load(USER, ResourceKind.ENTRY, page_size=10_000)

        assert len(page.records) == 3

    @pytest.mark.asyncio
    async def test_active_save_leaves_single_active(self, router):
        await router.save(USER, ResourceKind.ROUTINE, make_routine("first", active=True))
        await router.save(USER, ResourceKind.ROUTINE, make_routine("second", active=True))

        page = await router.load(USER, ResourceKind.ROUTINE)

        assert [(r.title, r.active) for r in page.records] == [("second", True), ("first", False)]

    @pytest.mark.asyncio
    async def test_set_active_remote_record(self, router):
        first = (await router.save(USER, ResourceKind.SCHEDULE, make_schedule("a", active=True))).ref
        await router.save(USER, ResourceKind.SCHEDULE, make_schedule("b", active=True))

        ref = await router.set_active(USER, ResourceKind.SCHEDULE, first.id)

        assert ref.scope == RecordScope.REMOTE
        page = await router.load(USER, ResourceKind.SCHEDULE)
        assert [r.id for r in page.records if r.active] == [first.id]

    @pytest.mark.asyncio
    async def test_delete_remote_entry(self, router):
        ref = (await router.save(USER, ResourceKind.ENTRY, make_entry(1))).ref

        await router.delete(USER, ResourceKind.ENTRY, ref.id)

        assert (await router.load(USER, ResourceKind.ENTRY)).records == []
        with pytest.raises(NotFoundError):
            await router.delete(USER, ResourceKind.ENTRY, ref.id)


class TestDegradedRemote:
    """Saves degrade silently; loads surface a retryable error."""

    @pytest.fixture(autouse=True)
    async def upgrade(self, tracker):
        await tracker.apply_payment_success(USER, SubscriptionTier.SLEEP_FOCUSED)

    @pytest.mark.asyncio
    async def test_save_falls_back_to_local(self, degraded_router, local_cache):
        result = await degraded_router.save(USER, ResourceKind.ENTRY, make_entry(1))

        assert result.state == SaveState.DONE
        assert result.ref.scope == RecordScope.LOCAL
        assert result.fell_back is True
        assert result.trace == [
            SaveState.START,
            SaveState.REMOTE_ATTEMPT,
            SaveState.REMOTE_DEGRADED,
            SaveState.LOCAL_WRITE,
            SaveState.DONE,
        ]
        assert len(await local_cache.read(USER, ResourceKind.ENTRY)) == 1

    @pytest.mark.asyncio
    async def test_fallback_uses_free_quotas(self, degraded_router, local_cache):
        for n in range(1, 6):
            await degraded_router.save(USER, ResourceKind.ENTRY, make_entry(n))

        assert len(await local_cache.read(USER, ResourceKind.ENTRY)) == 3

    @pytest.mark.asyncio
    async def test_remote_store_error_also_falls_back(self, tracker, local_cache):
        remote = AsyncMock()
        remote.write.side_effect = RemoteStoreError("Remote write failed", operation="write")
        router = StorageRouter(tracker, local_cache, remote)

        result = await router.save(USER, ResourceKind.ENTRY, make_entry(1))

        assert result.ref.scope == RecordScope.LOCAL
        assert result.state == SaveState.DONE

    @pytest.mark.asyncio
    async def test_permission_denied_falls_back(self, tracker, local_cache):
        remote = AsyncMock()
        remote.write.return_value = Degraded(operation="write", reason=RemoteFailure.PERMISSION_DENIED)
        router = StorageRouter(tracker, local_cache, remote)

        result = await router.save(USER, ResourceKind.ENTRY, make_entry(1))

        assert result.fell_back is True

    @pytest.mark.asyncio
    async def test_load_raises_retryable_error(self, degraded_router, local_cache):
        await local_cache.write(USER, ResourceKind.ENTRY, make_entry(1), quota=3)

        with pytest.raises(RemoteUnavailableError) as exc_info:
            await degraded_router.load(USER, ResourceKind.ENTRY)

        assert exc_info.value.details["retryable"] is True

    @pytest.mark.asyncio
    async def test_set_active_raises_retryable_error(self, degraded_router):
        with pytest.raises(RemoteUnavailableError):
            await degraded_router.set_active(
                USER, ResourceKind.SCHEDULE, "00000000-0000-0000-0000-000000000001"
            )


class TestMutations:

    @pytest.mark.asyncio
    async def test_set_active_local_record(self, router):
        first = (await router.save(USER, ResourceKind.SCHEDULE, make_schedule("a", active=True))).ref
        await router.save(USER, ResourceKind.SCHEDULE, make_schedule("b", active=True))

        ref = await router.set_active(USER, ResourceKind.SCHEDULE, first.id)

        assert ref.scope == RecordScope.LOCAL
        records = (await router.load(USER, ResourceKind.SCHEDULE)).records
        assert [r.title for r in records if r.active] == ["a"]

    @pytest.mark.asyncio
    async def test_entries_cannot_be_activated(self, router):
        with pytest.raises(ValidationError):
            await router.set_active(USER, ResourceKind.ENTRY, "local_entry_x")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kind", [ResourceKind.SCHEDULE, ResourceKind.ROUTINE])
    async def test_only_entries_can_be_deleted(self, router, kind):
        with pytest.raises(ValidationError):
            await router.delete(USER, kind, "local_schedule_x")

    @pytest.mark.asyncio
    async def test_delete_local_entry(self, router):
        ref = (await router.save(USER, ResourceKind.ENTRY, make_entry(1))).ref

        await router.delete(USER, ResourceKind.ENTRY, ref.id)

        assert (await router.load(USER, ResourceKind.ENTRY)).records == []

    @pytest.mark.asyncio
    async def test_remote_ids_are_not_found_for_free_users(self, router):
        with pytest.raises(NotFoundError):
            await router.delete(USER, ResourceKind.ENTRY, "00000000-0000-0000-0000-000000000001")


class TestStorageInfo:

    @pytest.mark.asyncio
    async def test_reports_tier_quotas_and_usage(self, router):
        await router.save(USER, ResourceKind.ENTRY, make_entry(1))
        await router.save(USER, ResourceKind.ENTRY, make_entry(2))

        info = await router.storage_info(USER)

        assert info.tier == SubscriptionTier.FREE
        assert info.has_remote_access is False
        assert info.quotas.max_local_entries == 3
        assert info.local_usage[ResourceKind.ENTRY] == 2

    def test_quota_for_maps_each_kind(self):
        from app.domain.subscription import resolve_entitlement

        quotas = resolve_entitlement(SubscriptionTier.FULL_TRANSFORMATION).quotas

        assert quota_for(ResourceKind.ENTRY, quotas) == 365
        assert quota_for(ResourceKind.SCHEDULE, quotas) == 10
        assert quota_for(ResourceKind.ROUTINE, quotas) == 5

    @pytest.mark.asyncio
    async def test_clear_local_drops_cached_records(self, router, local_cache):
        await router.save(USER, ResourceKind.ENTRY, make_entry(1))
        await router.save(USER, ResourceKind.ROUTINE, make_routine())
        await router.save_preferences(USER, UserPreferences(theme="dark"))

        result = await router.clear_local(USER)

        assert result.cleared[ResourceKind.ENTRY] == 1
        assert result.cleared[ResourceKind.ROUTINE] == 1
        assert result.preferences_cleared is True
        assert (await router.storage_info(USER)).local_usage[ResourceKind.ENTRY] == 0
        assert await local_cache.read_preferences(USER) is None


class TestPreferences:
    """Preferences follow the same routing as records."""

    @pytest.mark.asyncio
    async def test_free_user_preferences_stay_local(self, router, local_cache, remote_store):
        result = await router.save_preferences(USER, UserPreferences(theme="dark"))

        assert result.state == SaveState.DONE
        assert result.scope == RecordScope.LOCAL
        assert result.trace == [
            SaveState.START,
            SaveState.NO_REMOTE_ACCESS,
            SaveState.LOCAL_WRITE,
            SaveState.DONE,
        ]
        assert (await local_cache.read_preferences(USER)).theme == "dark"
        assert (await remote_store.get_preferences(USER)).value is None

    @pytest.mark.asyncio
    async def test_saves_merge_for_free_user(self, router):
        await router.save_preferences(USER, UserPreferences(theme="dark"))
        await router.save_preferences(USER, UserPreferences(timezone="Europe/Lisbon"))

        loaded = await router.load_preferences(USER)

        assert loaded == UserPreferences(theme="dark", timezone="Europe/Lisbon")

    @pytest.mark.asyncio
    async def test_unsaved_preferences_load_empty(self, router):
        assert (await router.load_preferences(USER)).is_empty

    @pytest.mark.asyncio
    async def test_entitled_user_preferences_go_remote(self, router, tracker, local_cache):
        await tracker.apply_payment_success(USER, SubscriptionTier.SLEEP_FOCUSED)

        result = await router.save_preferences(USER, UserPreferences(notifications=True))

        assert result.scope == RecordScope.REMOTE
        assert result.trace[-2:] == [SaveState.REMOTE_OK, SaveState.DONE]
        assert (await router.load_preferences(USER)).notifications is True
        assert await local_cache.read_preferences(USER) is None

    @pytest.mark.asyncio
    async def test_degraded_save_falls_back_to_local(self, degraded_router, tracker, local_cache):
        await tracker.apply_payment_success(USER, SubscriptionTier.SLEEP_FOCUSED)

        result = await degraded_router.save_preferences(USER, UserPreferences(theme="light"))

        assert result.state == SaveState.DONE
        assert result.scope == RecordScope.LOCAL
        assert result.fell_back is True
        assert (await local_cache.read_preferences(USER)).theme == "light"

    @pytest.mark.asyncio
    async def test_remote_store_error_falls_back(self, tracker, local_cache):
        await tracker.apply_payment_success(USER, SubscriptionTier.SLEEP_FOCUSED)
        remote = AsyncMock()
        remote.merge_preferences.side_effect = RemoteStoreError(
            "Remote merge_preferences failed", operation="merge_preferences"
        )
        router = StorageRouter(tracker, local_cache, remote)

        result = await router.save_preferences(USER, UserPreferences(theme="dark"))

        assert result.scope == RecordScope.LOCAL
        assert SaveState.REMOTE_DEGRADED in result.trace

    @pytest.mark.asyncio
    async def test_degraded_load_raises_retryable_error(self, degraded_router, tracker):
        await tracker.apply_payment_success(USER, SubscriptionTier.SLEEP_FOCUSED)

        with pytest.raises(RemoteUnavailableError):
            await degraded_router.load_preferences(USER)

    @pytest.mark.asyncio
    async def test_local_failure_is_reported_not_raised(self, tracker, remote_store):
        local = AsyncMock()
        local.write_preferences.side_effect = LocalStorageFullError(
            "Local storage is full", operation="write_preferences"
        )
        router = StorageRouter(tracker, local, remote_store)

        result = await router.save_preferences(USER, UserPreferences(theme="dark"))

        assert result.state == SaveState.FAILED
        assert result.preferences is None
        assert result.trace[-1] == SaveState.FAILED
