"""
Database Infrastructure Package for SleepVision

Exports database utilities for the remote store and the local cache.
"""

from app.infrastructure.db.database import (
    DatabaseManager,
    build_local_db_manager,
    build_remote_db_manager,
    resolve_remote_database_url,
)


__all__ = [
    "DatabaseManager",
    "build_local_db_manager",
    "build_remote_db_manager",
    "resolve_remote_database_url",
]
