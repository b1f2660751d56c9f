"""
CommsLog - Local store for communication events (calls, messages).

CommsLog keeps a history of communication events in an embedded SQLite
database. It provides:
- Insert-or-update and delete of log entries by id
- Bulk retrieval and single-index searches (contact, time range, service, type, number)
- Collision-checked identifiers for new entries
- Asynchronous, future-based operations serialised on one worker thread

Example usage:
    >>> from commslog import LogManager, LogStore, StoreConfig
    >>> manager = LogManager(LogStore(StoreConfig(db_path="commslog.db")))
    >>> entry = manager.allocate("Telephony").result()
    >>> entry.tel = ["+34600000000"]
    >>> manager.put(entry).result()
    >>> manager.find({"service": "Telephony"}).result()
"""

import logging

from commslog.manager import LogManager
from commslog.query import IndexQuery, KeyRange
from commslog.schema import LogEntry, LogFilter, ScanOrder, StoreConfig
from commslog.store import LogStore

__version__ = "0.1.0"
__author__ = "CommsLog Contributors"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "IndexQuery",
    "KeyRange",
    "LogEntry",
    "LogFilter",
    "LogManager",
    "LogStore",
    "ScanOrder",
    "StoreConfig",
    "__author__",
    "__version__",
]
