"""
Storage module for CommsLog.

This module provides SQLite-based persistence for communication log entries.
LogStore owns the single database connection; all reads and writes go
through it and run one at a time on its worker thread.

Tables:
    - logs: One row per entry, keyed by id
    - log_contacts / log_tels: Multi-entry index rows for contacts and numbers

Schema changes are not migrated: a new schema version recreates the store.
"""

from commslog.store.db import (
    INDEXES,
    LogStore,
    StoreState,
    build_index_scan,
    failed_future,
    generate_id,
    now_ms,
)

__all__ = [
    "INDEXES",
    "LogStore",
    "StoreState",
    "build_index_scan",
    "failed_future",
    "generate_id",
    "now_ms",
]
