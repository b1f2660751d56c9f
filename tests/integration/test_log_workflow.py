"""
Integration tests for the end-to-end logging workflow.

Tests cover:
- Allocate, fill in, store and search an entry
- Entries surviving a store restart
- Callback-only usage without blocking on futures
"""

import threading
from pathlib import Path

from commslog import LogManager, LogStore, StoreConfig
from commslog.schema import EntryType


class TestLogWorkflow:
    def test_call_is_logged_and_found(self, temp_db_path: Path) -> None:
        with LogStore(StoreConfig(db_path=str(temp_db_path))) as store:
            manager = LogManager(store)

            entry = manager.allocate("Telephony", 1000).result(timeout=5)
            entry.type = EntryType.MISSED.value
            entry.status = "unread"
            entry.tel = ["+34600000000"]
            entry.contact_id = ["ana"]
            manager.put(entry).result(timeout=5)

            assert manager.find({"contactId": "ana"}).result(timeout=5) == [entry]
            assert manager.find({"type": "missed"}).result(timeout=5) == [entry]
            assert manager.find({"tel": "+34600000000"}).result(timeout=5) == [entry]

        with LogStore(StoreConfig(db_path=str(temp_db_path))) as store:
            assert LogManager(store).get_all().result(timeout=5) == [entry]

    def test_callbacks_only(self, temp_db_path: Path) -> None:
        store = LogStore(StoreConfig(db_path=str(temp_db_path)))
        manager = LogManager(store)
        done = threading.Event()
        found = []
        errors = []

        def on_found(entries: list) -> None:
            found.extend(entries)
            done.set()

        def on_stored(entry_id: str) -> None:
            manager.find({"service": "SMS"}, on_found, errors.append)

        def on_allocated(entry) -> None:
            entry.title = "Hello"
            manager.put(entry, on_stored, errors.append)

        manager.allocate("SMS", 5, on_allocated, errors.append)

        assert done.wait(timeout=5)
        assert errors == []
        assert [e.title for e in found] == ["Hello"]
        store.close()
