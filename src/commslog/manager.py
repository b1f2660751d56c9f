"""
LogManager for CommsLog.

The LogManager is the application-facing layer. It turns search filters into
a single index query and hands everything else straight to the LogStore.

Query Selection:
    Only one index is used per find, chosen by the first filter field set in
    this order:
        1. contact_id  -> contactId index, exact match
        2. from_ / to  -> timestamp index, inclusive range
        3. service     -> service index, exact match
        4. type        -> type index, exact match
        5. tel         -> tel index, exact match
    Remaining fields are ignored. There is no multi-index query.
"""

import logging
from collections.abc import Mapping
from concurrent.futures import Future
from typing import Any

from pydantic import ValidationError

from commslog.errors import InvalidFilterError, QueryError, UnrecognizedFilterError
from commslog.query import IndexQuery
from commslog.schema import LogEntry, LogFilter
from commslog.store import LogStore, failed_future
from commslog.store.db import ErrorCallback, SuccessCallback, _notify

logger = logging.getLogger(__name__)

# Field and wire names of the searchable filter dimensions
SEARCH_KEYS = (
    "contactId",
    "contact_id",
    "from",
    "from_",
    "to",
    "service",
    "type",
    "tel",
)


def build_query(log_filter: LogFilter) -> IndexQuery:
    """
    Map a filter onto one index query.

    Raises:
        UnrecognizedFilterError: If no searchable field is set
    """
    if log_filter.is_empty():
        raise UnrecognizedFilterError(
            filter=log_filter.model_dump(by_alias=True, exclude_none=True),
        )

    if log_filter.contact_id is not None:
        query = IndexQuery("contactId").set_filter_value(log_filter.contact_id)
    elif log_filter.from_ is not None or log_filter.to is not None:
        query = IndexQuery("timestamp")
        if log_filter.from_ is not None:
            query.set_lower_filter_value(log_filter.from_)
        if log_filter.to is not None:
            query.set_upper_filter_value(log_filter.to)
    elif log_filter.service is not None:
        query = IndexQuery("service").set_filter_value(log_filter.service)
    elif log_filter.type is not None:
        query = IndexQuery("type").set_filter_value(log_filter.type)
    else:
        query = IndexQuery("tel").set_filter_value(log_filter.tel)

    if log_filter.ascending:
        query.invert_order()
    return query


class LogManager:
    """
    Facade over a LogStore for application code.

    Usage:
        manager = LogManager(LogStore(StoreConfig(db_path="commslog.db")))
        manager.put(entry)
        entries = manager.find({"service": "Telephony"}).result()

    Attributes:
        store: The LogStore every call is delegated to
    """

    def __init__(self, store: LogStore) -> None:
        self.store = store

    def put(
        self,
        entry: LogEntry | None,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future | None:
        """Store an entry. Does nothing (and returns None) when entry is None."""
        if entry is None:
            return None
        return self.store.put(entry, on_success, on_error)

    def delete(
        self,
        entry_id: str | None,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future | None:
        """Delete an entry by id. Does nothing (and returns None) without an id."""
        if not entry_id:
            return None
        return self.store.delete(entry_id, on_success, on_error)

    def find(
        self,
        log_filter: LogFilter | Mapping[str, Any],
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future:
        """
        Search the log through one index.

        Args:
            log_filter: A LogFilter, or a mapping using its field names or
                the wire names (contactId, from, to, service, type, tel)
            on_success: Called with the list of matching entries
            on_error: Called with the error if the search fails

        Returns:
            Future resolving to the matching entries, newest first unless the
            filter asks for ascending order. Fails with UnrecognizedFilterError
            when the filter sets no searchable field, and with
            InvalidFilterError when a searchable field has an unusable value.
        """
        try:
            query = build_query(_as_filter(log_filter))
        except QueryError as e:
            logger.debug("find rejected filter: %s", e)
            return failed_future(e, on_error)
        logger.debug("find using %r", query)
        return self.store.get_by_index(query, on_success, on_error)

    def clear(
        self,
        log_filter: LogFilter | Mapping[str, Any] | None = None,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future:
        """
        Delete entries in bulk.

        With no filter every entry is deleted. With a filter, the entries
        find(log_filter) would return are deleted.

        Returns:
            Future resolving to the number of deleted entries
        """
        if log_filter is None:
            return self.store.clear_all(on_success, on_error)

        outcome: Future = Future()
        outcome.set_running_or_notify_cancel()

        def fail(exc: BaseException) -> None:
            outcome.set_exception(exc)
            if on_error is not None:
                _notify(on_error, exc)

        def settle(deleted: int) -> None:
            outcome.set_result(deleted)
            if on_success is not None:
                _notify(on_success, deleted)

        def delete_found(entries: list[LogEntry]) -> None:
            ids = list(dict.fromkeys(entry.id for entry in entries))
            self.store.delete_many(ids, settle, fail)

        self.find(log_filter, delete_found, fail)
        return outcome

    def get_all(
        self,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future:
        """Fetch every entry."""
        return self.store.get_all(on_success, on_error)

    def allocate(
        self,
        service: str,
        timestamp: int | None = None,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> Future:
        """Create a new entry shell with a collision-checked id."""
        return self.store.get_log_entry_properties(service, timestamp, on_success, on_error)


def _as_filter(log_filter: LogFilter | Mapping[str, Any]) -> LogFilter:
    if isinstance(log_filter, LogFilter):
        return log_filter
    fields = dict(log_filter)
    try:
        return LogFilter.model_validate(fields)
    except ValidationError as e:
        if all(fields.get(key) is None for key in SEARCH_KEYS):
            raise UnrecognizedFilterError(filter=fields) from e
        raise InvalidFilterError(filter=fields, underlying_error=str(e)) from e
