"""
Pytest configuration and fixtures for CommsLog tests.

This module provides shared fixtures used across unit and integration tests.
"""

import tempfile
from pathlib import Path
from typing import Any, Callable, Generator

import pytest

from commslog.manager import LogManager
from commslog.schema import LogEntry, StoreConfig
from commslog.store import LogStore


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir: Path) -> Path:
    """Path for a database file that doesn't exist yet."""
    return temp_dir / "commslog.db"


@pytest.fixture
def store(temp_db_path: Path) -> Generator[LogStore, None, None]:
    """An opened store on a fresh database."""
    log_store = LogStore(StoreConfig(db_path=str(temp_db_path)))
    log_store.init().result(timeout=5)
    yield log_store
    log_store.close()


@pytest.fixture
def manager(store: LogStore) -> LogManager:
    """A manager over the fresh store."""
    return LogManager(store)


@pytest.fixture
def make_entry() -> Callable[..., LogEntry]:
    """Factory for log entries with sensible defaults."""

    def _make(
        entry_id: str,
        timestamp: int = 1000,
        service: str = "Telephony",
        **fields: Any,
    ) -> LogEntry:
        return LogEntry(id=entry_id, service=service, timestamp=timestamp, **fields)

    return _make


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a simple store config YAML for testing."""
    return """
db_path: ./calls.db
version: 2
max_id_attempts: 4
"""
