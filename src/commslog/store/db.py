"""
SQLite storage for CommsLog.

LogStore is the only owner of the database connection. Every operation is
asynchronous: it returns a concurrent.futures.Future straight away and runs
on the store's single worker thread, so operations never overlap and each one
gets its own transaction. Optional on_success/on_error callbacks fire exactly
once when the operation settles.

Tables:
    - logs: One row per entry (id, indexed scalar fields, full JSON)
    - log_contacts: One row per contact reference of an entry
    - log_tels: One row per phone number of an entry

Indexes (queryable through get_by_index):
    - contactId, tel: multi-entry, an entry is found by any element
    - service, timestamp, type: plain column indexes

Schema versioning:
    PRAGMA user_version holds the schema version. Opening the database with
    a different version drops every table and recreates them empty. There is
    no migration.
"""

import logging
import sqlite3
import threading
import uuid
from collections.abc import Callable, Iterable
from concurrent import futures
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Generator

from pydantic import ValidationError

from commslog.errors import (
    IdentifierSpaceExhaustedError,
    QueryError,
    StorageConnectionError,
    StorageReadError,
    StorageWriteError,
    StoreClosedError,
    UnknownIndexError,
)
from commslog.query import IndexQuery, KeyRange
from commslog.schema import LogEntry, ScanOrder, StoreConfig

logger = logging.getLogger(__name__)

SuccessCallback = Callable[[Any], Any]
ErrorCallback = Callable[[BaseException], Any]

STORE_NAME = "logs"

DROP_TABLES_SQL = """
DROP TABLE IF EXISTS log_contacts;
DROP TABLE IF EXISTS log_tels;
DROP TABLE IF EXISTS logs;
"""

CREATE_TABLES_SQL = """
-- Entries, keyed by id. entry_json holds the complete record.
CREATE TABLE logs (
    id TEXT PRIMARY KEY,
    service TEXT,
    timestamp INTEGER,
    type TEXT,
    entry_json TEXT NOT NULL
);

-- Multi-entry index tables. contact_id has no declared type so integer and
-- text references keep their storage class and sort the way they were given.
CREATE TABLE log_contacts (
    log_id TEXT NOT NULL REFERENCES logs(id) ON DELETE CASCADE,
    contact_id NOT NULL,
    PRIMARY KEY (log_id, contact_id)
);

CREATE TABLE log_tels (
    log_id TEXT NOT NULL REFERENCES logs(id) ON DELETE CASCADE,
    tel TEXT NOT NULL,
    PRIMARY KEY (log_id, tel)
);

CREATE INDEX idx_logs_service ON logs(service, id);
CREATE INDEX idx_logs_timestamp ON logs(timestamp, id);
CREATE INDEX idx_logs_type ON logs(type, id);
CREATE INDEX idx_log_contacts_contact_id ON log_contacts(contact_id, log_id);
CREATE INDEX idx_log_tels_tel ON log_tels(tel, log_id);
"""

UPSERT_ENTRY_SQL = """
INSERT INTO logs (id, service, timestamp, type, entry_json)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    service = excluded.service,
    timestamp = excluded.timestamp,
    type = excluded.type,
    entry_json = excluded.entry_json
"""


@dataclass(frozen=True)
class _Index:
    """Where an index's keys live: a column of logs or a multi-entry table."""

    table: str
    column: str

    @property
    def key(self) -> str:
        return f"{self.table}.{self.column}"

    @property
    def multi_entry(self) -> bool:
        return self.table != STORE_NAME


INDEXES: dict[str, _Index] = {
    "contactId": _Index("log_contacts", "contact_id"),
    "service": _Index(STORE_NAME, "service"),
    "timestamp": _Index(STORE_NAME, "timestamp"),
    "tel": _Index("log_tels", "tel"),
    "type": _Index(STORE_NAME, "type"),
}


class StoreState(str, Enum):
    """Lifecycle of the database connection."""

    UNINITIALIZED = "uninitialized"
    OPENING = "opening"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


def generate_id() -> str:
    """Generate a 36 character 8-4-4-4-12 hex identifier."""
    return str(uuid.uuid4())


def now_ms() -> int:
    """Get the current UTC time in epoch milliseconds."""
    return int(datetime.now(UTC).timestamp() * 1000)


def failed_future(
    error: BaseException,
    on_error: ErrorCallback | None = None,
) -> Future:
    """Return a future that already holds error, after telling on_error."""
    future: Future = Future()
    future.set_running_or_notify_cancel()
    future.set_exception(error)
    if on_error is not None:
        _notify(on_error, error)
    return future


def build_index_scan(
    index: _Index,
    key_range: KeyRange | None,
    order: ScanOrder,
) -> tuple[str, list[Any]]:
    """
    Build the SELECT for a cursor scan over one index.

    Entries without a value for the indexed field are not part of the index
    and never match. Ties on the key are broken by id in the same direction,
    so flipping the order reverses the result exactly.
    """
    if index.multi_entry:
        sql = (
            f"SELECT logs.entry_json FROM {index.table} "
            f"JOIN logs ON logs.id = {index.table}.log_id"
        )
    else:
        sql = "SELECT logs.entry_json FROM logs"

    clauses = [f"{index.key} IS NOT NULL"]
    params: list[Any] = []

    if key_range is not None:
        if key_range.is_exact:
            clauses.append(f"{index.key} = ?")
            params.append(key_range.lower)
        else:
            if key_range.lower is not None:
                op = ">" if key_range.lower_open else ">="
                clauses.append(f"{index.key} {op} ?")
                params.append(key_range.lower)
            if key_range.upper is not None:
                op = "<" if key_range.upper_open else "<="
                clauses.append(f"{index.key} {op} ?")
                params.append(key_range.upper)

    direction = "DESC" if order == ScanOrder.PREV else "ASC"
    sql += (
        f" WHERE {' AND '.join(clauses)}"
        f" ORDER BY {index.key} {direction}, logs.id {direction}"
    )
    return sql, params


def _notify(callback: Callable[..., Any], *args: Any) -> None:
    """Invoke a caller-supplied callback; its failures are logged, not propagated."""
    try:
        callback(*args)
    except Exception:
        logger.exception("Callback %r raised", callback)


def _decode(row: sqlite3.Row) -> LogEntry:
    return LogEntry.model_validate_json(row["entry_json"])


class LogStore:
    """
    SQLite-backed store for communication log entries.

    The connection is opened on first use (or by calling init) and released
    by close. Every public operation returns a Future and also accepts
    on_success/on_error callbacks.

    Usage:
        store = LogStore(StoreConfig(db_path="commslog.db"))
        entry = store.get_log_entry_properties("Telephony").result()
        entry.tel = ["+34600000000"]
        store.put(entry).result()
        store.close()

    Or use as context manager:
        with LogStore(config) as store:
            ...

    Do not call close from inside an operation callback; callbacks run on
    the worker thread that close waits for.
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        *,
        db_path: str | Path | None = None,
        error_handler: ErrorCallback | None = None,
        id_factory: Callable[[], str] = generate_id,
    ) -> None:
        """
        Create the store without opening the database.

        Args:
            config: Store configuration (defaults to StoreConfig())
            db_path: Overrides config.db_path
            error_handler: Told once if the database fails to open
            id_factory: Source of candidate identifiers
        """
        config = config or StoreConfig()
        if db_path is not None:
            config = config.model_copy(update={"db_path": str(db_path)})
        self.config = config
        self._error_handler = error_handler
        self._id_factory = id_factory

        self._lock = threading.Lock()
        self._state = StoreState.UNINITIALIZED
        self._conn: sqlite3.Connection | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._open_future: Future | None = None
        self._open_error: StorageConnectionError | None = None
        self._closing = False
        self._pending: set[Future] = set()

    def __enter__(self) -> "LogStore":
        """Enter context manager."""
        self.init()
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    @property
    def state(self) -> StoreState:
        return self._state

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def init(self) -> Future:
        """
        Start opening the database, creating or upgrading it if needed.

        Safe to call repeatedly: while opening, ready or failed it returns
        the same open future.

        Returns:
            Future resolving to the connection, or failing with
            StorageConnectionError
        """
        with self._lock:
            if self._state in (StoreState.UNINITIALIZED, StoreState.CLOSED):
                self._state = StoreState.OPENING
                self._open_error = None
                self._executor = ThreadPoolExecutor(
                    max_workers=1,
                    thread_name_prefix="commslog-store",
                )
                self._open_future = self._executor.submit(self._open)
            return self._open_future

    def _open(self) -> sqlite3.Connection:
        db_path = self.config.db_path
        conn: sqlite3.Connection | None = None
        try:
            conn = sqlite3.connect(db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._upgrade_if_needed(conn)
        except sqlite3.Error as e:
            if conn is not None:
                conn.close()
            error = StorageConnectionError(
                db_path=db_path,
                operation="open",
                message=f"Failed to open database {db_path}: {e}",
            )
            with self._lock:
                self._state = StoreState.FAILED
                self._open_error = error
            logger.error("Cannot open log database %s: %s", db_path, e)
            if self._error_handler is not None:
                _notify(self._error_handler, error)
            raise error from e

        with self._lock:
            self._conn = conn
            self._state = StoreState.READY
        logger.info("Opened log database %s (version %d)", db_path, self.config.version)
        return conn

    def _upgrade_if_needed(self, conn: sqlite3.Connection) -> None:
        """Drop and recreate the store when the schema version differs."""
        current = conn.execute("PRAGMA user_version").fetchone()[0]
        target = self.config.version
        if current == target:
            return

        existing = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (STORE_NAME,),
        ).fetchone()
        if existing is not None:
            logger.warning(
                "Log database version changed from %d to %d, dropping all entries",
                current,
                target,
            )
        else:
            logger.info("Creating log store (version %d)", target)

        try:
            conn.executescript(
                "BEGIN;\n"
                + DROP_TABLES_SQL
                + CREATE_TABLES_SQL
                + f"PRAGMA user_version = {int(target)};\n"
                + "COMMIT;\n"
            )
        except sqlite3.Error:
            if conn.in_transaction:
                conn.rollback()
            raise

    def get_database(
        self,
        on_ready: Callable[[sqlite3.Connection], Any],
        on_error: ErrorCallback | None = None,
    ) -> None:
        """
        Hand the open connection to on_ready.

        Never blocks. If the connection is ready on_ready runs immediately;
        if the database is still opening the callbacks wait for it, and each
        caller is notified exactly once. After a failed open, on_error gets
        the same StorageConnectionError every time. The first call on an
        uninitialized store starts opening it.
        """
        with self._lock:
            state, conn, error = self._state, self._conn, self._open_error

        if state == StoreState.READY:
            on_ready(conn)
            return
        if state == StoreState.FAILED:
            if on_error is not None:
                on_error(error)
            return

        open_future = self.init()

        def settle(future: Future) -> None:
            exc = future.exception()
            if exc is None:
                on_ready(future.result())
            elif on_error is not None:
                on_error(exc)

        open_future.add_done_callback(settle)

    def close(self) -> None:
        """
        Close the database once every pending operation has settled.

        The store can be opened again afterwards with init or by using it.
        """
        with self._lock:
            if self._state in (StoreState.UNINITIALIZED, StoreState.CLOSED) or self._closing:
                return
            self._closing = True
            pending = list(self._pending)
            executor = self._executor

        futures.wait(pending)
        executor.submit(self._close_connection)
        executor.shutdown(wait=True)

        with self._lock:
            self._state = StoreState.CLOSED
            self._executor = None
            self._open_future = None
            self._open_error = None
            self._closing = False
        logger.info("Closed log database %s", self.config.db_path)

    def _close_connection(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _dispatch(
        self,
        name: str,
        operation: Callable[[sqlite3.Connection], Any],
        on_success: SuccessCallback | None,
        on_error: ErrorCallback | None,
    ) -> Future:
        """Run operation on the worker thread once the connection is ready."""
        outcome: Future = Future()
        outcome.set_running_or_notify_cancel()

        def fail(exc: BaseException) -> None:
            logger.debug("%s failed: %s", name, exc)
            outcome.set_exception(exc)
            if on_error is not None:
                _notify(on_error, exc)

        def run(conn: sqlite3.Connection) -> None:
            try:
                value = operation(conn)
            except Exception as e:
                fail(e)
                return
            outcome.set_result(value)
            if on_success is not None:
                _notify(on_success, value)

        def submit(conn: sqlite3.Connection) -> None:
            with self._lock:
                executor = self._executor
            if executor is None:
                fail(StoreClosedError(operation=name))
                return
            try:
                executor.submit(run, conn)
            except RuntimeError as e:
                fail(StoreClosedError(operation=name, message=f"Log store is closed: {e}"))

        with self._lock:
            if self._closing:
                closed = True
            else:
                closed = False
                self._pending.add(outcome)
        if closed:
            fail(StoreClosedError(operation=name))
            return outcome

        outcome.add_done_callback(self._forget)
        logger.debug("Dispatching %s", name)
        self.get_database(submit, fail)
        return outcome

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    @contextmanager
    def _transaction(self, conn: sqlite3.Connection) -> Generator[None, None, None]:
        """Context manager for database transactions."""
        try:
            yield
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    # =========================================================================
    # Write Operations
    # =========================================================================

    def put(
        self,
        entry: LogEntry,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future:
        """
        Insert or replace an entry, keyed by its id.

        The entry is serialised when put is called, so later changes to the
        object do not leak into the stored copy.

        Returns:
            Future resolving to the entry id
        """
        entry_id = entry.id
        row = (
            entry.id,
            entry.service,
            entry.timestamp,
            entry.type,
            entry.model_dump_json(by_alias=True),
        )
        contacts = [(entry_id, contact) for contact in entry.contact_id]
        tels = [(entry_id, tel) for tel in entry.tel]

        def _put(conn: sqlite3.Connection) -> str:
            try:
                with self._transaction(conn):
                    conn.execute(UPSERT_ENTRY_SQL, row)
                    conn.execute("DELETE FROM log_contacts WHERE log_id = ?", (entry_id,))
                    conn.execute("DELETE FROM log_tels WHERE log_id = ?", (entry_id,))
                    conn.executemany(
                        "INSERT OR IGNORE INTO log_contacts (log_id, contact_id) VALUES (?, ?)",
                        contacts,
                    )
                    conn.executemany(
                        "INSERT OR IGNORE INTO log_tels (log_id, tel) VALUES (?, ?)",
                        tels,
                    )
            except sqlite3.Error as e:
                raise StorageWriteError(operation="put", underlying_error=str(e)) from e
            return entry_id

        return self._dispatch("put", _put, on_success, on_error)

    def delete(
        self,
        entry_id: str,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future:
        """
        Remove the entry with the given id. Removing an absent id succeeds.

        Returns:
            Future resolving to None
        """

        def _delete(conn: sqlite3.Connection) -> None:
            self._delete_ids(conn, [entry_id], "delete")

        return self._dispatch("delete", _delete, on_success, on_error)

    def delete_many(
        self,
        entry_ids: Iterable[str],
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future:
        """
        Remove several entries in one transaction.

        Returns:
            Future resolving to the number of entries actually removed
        """
        ids = list(entry_ids)

        def _delete_many(conn: sqlite3.Connection) -> int:
            return self._delete_ids(conn, ids, "delete_many")

        return self._dispatch("delete_many", _delete_many, on_success, on_error)

    def _delete_ids(self, conn: sqlite3.Connection, ids: list[str], operation: str) -> int:
        params = [(entry_id,) for entry_id in ids]
        try:
            with self._transaction(conn):
                conn.executemany("DELETE FROM log_contacts WHERE log_id = ?", params)
                conn.executemany("DELETE FROM log_tels WHERE log_id = ?", params)
                cursor = conn.executemany("DELETE FROM logs WHERE id = ?", params)
                return max(cursor.rowcount, 0)
        except sqlite3.Error as e:
            raise StorageWriteError(operation=operation, underlying_error=str(e)) from e

    def clear_all(
        self,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future:
        """
        Remove every entry.

        Returns:
            Future resolving to the number of entries removed
        """

        def _clear_all(conn: sqlite3.Connection) -> int:
            try:
                with self._transaction(conn):
                    conn.execute("DELETE FROM log_contacts")
                    conn.execute("DELETE FROM log_tels")
                    return conn.execute("DELETE FROM logs").rowcount
            except sqlite3.Error as e:
                raise StorageWriteError(operation="clear_all", underlying_error=str(e)) from e

        return self._dispatch("clear_all", _clear_all, on_success, on_error)

    # =========================================================================
    # Read Operations
    # =========================================================================

    def get(
        self,
        entry_id: str,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future:
        """
        Fetch one entry by id.

        Returns:
            Future resolving to the LogEntry, or None if not found
        """

        def _get(conn: sqlite3.Connection) -> LogEntry | None:
            try:
                row = conn.execute(
                    "SELECT entry_json FROM logs WHERE id = ?",
                    (entry_id,),
                ).fetchone()
                return _decode(row) if row is not None else None
            except (sqlite3.Error, ValidationError) as e:
                raise StorageReadError(operation="get", underlying_error=str(e)) from e

        return self._dispatch("get", _get, on_success, on_error)

    def get_all(
        self,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future:
        """
        Fetch every entry, in primary key order.

        Rows are read one at a time from the cursor; only the result list is
        held in memory.

        Returns:
            Future resolving to a list of LogEntry
        """

        def _get_all(conn: sqlite3.Connection) -> list[LogEntry]:
            try:
                cursor = conn.execute("SELECT entry_json FROM logs ORDER BY id")
                return [_decode(row) for row in cursor]
            except (sqlite3.Error, ValidationError) as e:
                raise StorageReadError(operation="get_all", underlying_error=str(e)) from e

        return self._dispatch("get_all", _get_all, on_success, on_error)

    def get_by_index(
        self,
        query: IndexQuery,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future:
        """
        Fetch the entries whose indexed field falls in the query's key range.

        A multi-entry index yields an entry once per matching element.

        Returns:
            Future resolving to a list of LogEntry in the query's order.
            Fails with UnknownIndexError for an index the store lacks and
            with InvalidKeyRangeError for an inverted range.
        """
        index = INDEXES.get(query.index_name)
        if index is None:
            return failed_future(
                UnknownIndexError(operation="get_by_index", index_name=query.index_name),
                on_error,
            )
        try:
            key_range = query.key_range()
        except QueryError as e:
            return failed_future(e, on_error)

        sql, params = build_index_scan(index, key_range, query.order)

        def _get_by_index(conn: sqlite3.Connection) -> list[LogEntry]:
            try:
                cursor = conn.execute(sql, params)
                return [_decode(row) for row in cursor]
            except (sqlite3.Error, ValidationError) as e:
                raise StorageReadError(
                    operation="get_by_index",
                    underlying_error=str(e),
                ) from e

        return self._dispatch("get_by_index", _get_by_index, on_success, on_error)

    def count(
        self,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future:
        """Number of stored entries."""

        def _count(conn: sqlite3.Connection) -> int:
            try:
                return conn.execute("SELECT COUNT(*) FROM logs").fetchone()[0]
            except sqlite3.Error as e:
                raise StorageReadError(operation="count", underlying_error=str(e)) from e

        return self._dispatch("count", _count, on_success, on_error)

    # =========================================================================
    # Identifiers
    # =========================================================================

    def generate_id(self) -> str:
        """Produce a candidate id. Uniqueness is checked by get_log_entry_properties."""
        return self._id_factory()

    def get_log_entry_properties(
        self,
        service: str,
        timestamp: int | None = None,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future:
        """
        Allocate an unused id and return a new entry shell.

        Candidate ids are probed against the store; a collision draws a new
        one, up to config.max_id_attempts tries.

        Args:
            service: Originating service for the new entry
            timestamp: Epoch milliseconds (defaults to now)

        Returns:
            Future resolving to a LogEntry with only id, service and
            timestamp set. Fails with IdentifierSpaceExhaustedError when
            every candidate collided.
        """
        if timestamp is None:
            timestamp = now_ms()
        max_attempts = self.config.max_id_attempts

        def _allocate(conn: sqlite3.Connection) -> LogEntry:
            for attempt in range(1, max_attempts + 1):
                entry_id = self.generate_id()
                try:
                    row = conn.execute(
                        "SELECT 1 FROM logs WHERE id = ?",
                        (entry_id,),
                    ).fetchone()
                except sqlite3.Error as e:
                    raise StorageReadError(
                        operation="get_log_entry_properties",
                        underlying_error=str(e),
                    ) from e
                if row is None:
                    return LogEntry(id=entry_id, service=service, timestamp=timestamp)
                logger.debug("Identifier %s already in use (attempt %d)", entry_id, attempt)
            raise IdentifierSpaceExhaustedError(attempts=max_attempts)

        return self._dispatch("get_log_entry_properties", _allocate, on_success, on_error)

