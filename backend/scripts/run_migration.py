#!/usr/bin/env python3
"""
Manual Local -> Cloud Migration Script

Re-runs the migration of locally cached records into the remote store for
users whose automatic migration failed. Users without remote access are
skipped. Run manually: python -m scripts.run_migration

Usage:
    python -m scripts.run_migration USER_ID [USER_ID ...]
    python -m scripts.run_migration USER_ID --force   # Skip the tier check
"""

import asyncio
import argparse
import logging

# Add parent directory to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config.settings import settings
from app.domain.storage import MigrationStatus
from app.infrastructure.services.components import build_components

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def migrate_users(user_ids: list[str], force: bool = False) -> dict:
    """
    Migrate each user's local cache to the remote store.

    Args:
        user_ids: Users to migrate
        force: Migrate even when the user's tier has no remote access

    Returns:
        Dict with migration statistics
    """
    stats = {
        "completed": 0,
        "failed": 0,
        "skipped": 0,
        "copied": 0,
    }

    components = build_components(settings)
    await components.startup()

    try:
        for user_id in user_ids:
            entitlement = await components.router.entitlement_for(user_id)
            if not entitlement.has_remote_access and not force:
                logger.info(f"Skipping {user_id}: tier {entitlement.tier.value} has no cloud storage")
                stats["skipped"] += 1
                continue

            job = await components.orchestrator.migrate(user_id)
            if job is None:
                stats["skipped"] += 1
                continue

            stats["copied"] += job.copied
            if job.status == MigrationStatus.COMPLETED:
                stats["completed"] += 1
            else:
                logger.error(f"Migration failed for {user_id}: {job.error}")
                stats["failed"] += 1
    finally:
        await components.shutdown()

    logger.info(f"Migration run complete: {stats}")
    return stats


async def main():
    parser = argparse.ArgumentParser(description="Migrate local cached records to the cloud")
    parser.add_argument("user_ids", nargs="+", help="User IDs to migrate")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Migrate even if the user's tier has no cloud storage"
    )
    args = parser.parse_args()

    stats = await migrate_users(args.user_ids, force=args.force)

    print("\n=== Migration Complete ===")
    print(f"Completed: {stats['completed']}")
    print(f"Failed: {stats['failed']}")
    print(f"Skipped: {stats['skipped']}")
    print(f"Records copied: {stats['copied']}")


if __name__ == "__main__":
    asyncio.run(main())
