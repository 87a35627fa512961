"""
Migration Orchestrator

Moves a user's locally cached records and preferences into the remote store
when they gain remote access. Local data is only cleared once every record is
durable remotely; a failed run leaves the cache untouched and the next trigger
re-attempts the full copy.
"""

import logging
from typing import Optional

from app.domain.events import TierChanged
from app.domain.interfaces import LocalCache, RemoteStore
from app.domain.records import ResourceKind
from app.domain.storage import Degraded, MigrationJob, MigrationStatus
from app.domain.subscription import crosses_remote_boundary
from app.infrastructure.db.models.base import utcnow
from app.infrastructure.exceptions import NotFoundError, RemoteStoreError, StorageError


logger = logging.getLogger(__name__)


class MigrationOrchestrator:
    """Local -> remote copy, at most one run in flight per user."""

    def __init__(self, local_cache: LocalCache, remote_store: RemoteStore):
        self._local = local_cache
        self._remote = remote_store
        self._in_flight: set[str] = set()
        self._last_jobs: dict[str, MigrationJob] = {}

    async def handle_tier_changed(self, event: TierChanged) -> Optional[MigrationJob]:
        """TierChanged listener. Only a change that grants remote access migrates."""
        if not crosses_remote_boundary(event.old_tier, event.new_tier):
            logger.debug(
                f"No migration for {event.user_id}: "
                f"{event.old_tier.value} -> {event.new_tier.value}"
            )
            return None
        return await self.migrate(event.user_id)

    def is_migrating(self, user_id: str) -> bool:
        return user_id in self._in_flight

    def last_job(self, user_id: str) -> Optional[MigrationJob]:
        return self._last_jobs.get(user_id)

    async def migrate(self, user_id: str) -> Optional[MigrationJob]:
        """
        Copy every cached record to the remote store, then drop the copied ones.

        Returns None when a migration for the user is already running.
        """
        if user_id in self._in_flight:
            logger.info(f"Migration already in progress for {user_id}, skipping")
            return None

        self._in_flight.add(user_id)
        try:
            job = await self._run(user_id)
        finally:
            self._in_flight.discard(user_id)

        self._last_jobs[user_id] = job
        return job

    async def _run(self, user_id: str) -> MigrationJob:
        job = MigrationJob(user_id=user_id)
        snapshot = await self._local.snapshot(user_id)
        job.source_counts = {kind: len(records) for kind, records in snapshot.items() if records}
        preferences = await self._local.read_preferences(user_id)
        has_preferences = preferences is not None and not preferences.is_empty

        if job.total == 0 and not has_preferences:
            job.status = MigrationStatus.COMPLETED
            job.finished_at = utcnow()
            logger.info(f"Migration {job.id} for {user_id}: nothing to migrate")
            return job

        job.status = MigrationStatus.COPYING
        logger.info(f"Migration {job.id} started for {user_id}: {job.total} record(s)")

        previously_active: dict[ResourceKind, str] = {}

        for kind, records in snapshot.items():
            # Cache is newest first; copy oldest first to keep remote ordering
            for record in reversed(records):
                was_active = kind.supports_active and getattr(record, "active", False)
                if kind.supports_active:
                    record = record.model_copy(update={"active": False})

                try:
                    result = await self._remote.write(user_id, kind, record)
                except RemoteStoreError as e:
                    return self._fail(job, e.message)

                if isinstance(result, Degraded):
                    return self._fail(job, f"remote {result.reason.value}: {result.detail}")

                job.copied += 1
                job.remote_ids.append(result.value)
                if was_active:
                    previously_active[kind] = result.value

        if has_preferences:
            try:
                result = await self._remote.merge_preferences(user_id, preferences)
            except RemoteStoreError as e:
                return self._fail(job, e.message)
            if isinstance(result, Degraded):
                return self._fail(job, f"remote {result.reason.value}: {result.detail}")
            job.preferences_copied = True

        # Only the snapshotted records; saves made during the copy stay cached
        try:
            for kind, records in snapshot.items():
                copied_ids = {record.id for record in records if record.id}
                await self._local.remove_ids(user_id, kind, copied_ids)
            if has_preferences:
                await self._local.remove_preferences(user_id, preferences)
        except StorageError as e:
            # Remote copies exist; a rerun will duplicate them
            return self._fail(job, f"local clear failed: {e.message}")

        for kind, remote_id in previously_active.items():
            await self._restore_active(user_id, kind, remote_id)

        job.status = MigrationStatus.COMPLETED
        job.finished_at = utcnow()
        logger.info(f"Migration {job.id} completed for {user_id}: {job.copied} record(s) copied")
        return job

    async def _restore_active(self, user_id: str, kind: ResourceKind, remote_id: str) -> None:
        try:
            result = await self._remote.set_active(user_id, kind, remote_id)
        except (RemoteStoreError, NotFoundError) as e:
            logger.warning(f"Could not restore active {kind.value} for {user_id}: {e.message}")
            return
        if isinstance(result, Degraded):
            logger.warning(
                f"Could not restore active {kind.value} for {user_id}: {result.reason.value}"
            )

    def _fail(self, job: MigrationJob, error: str) -> MigrationJob:
        job.status = MigrationStatus.FAILED
        job.failed = job.total - job.copied
        job.error = error
        job.finished_at = utcnow()
        logger.warning(
            f"Migration {job.id} failed for {job.user_id} after {job.copied}/{job.total} "
            f"record(s); local data kept: {error}"
        )
        return job
