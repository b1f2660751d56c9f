"""
Exception hierarchy for CommsLog.

All CommsLog exceptions inherit from CommsLogError, allowing callers to catch
every CommsLog-specific exception with a single except clause.

Exception Categories:
    - ConfigError: Configuration file could not be loaded
    - QueryError: A filter or key range could not be turned into a query
    - IdentifierSpaceExhaustedError: No free identifier found within the retry bound
    - StorageError: Database operation failed

Errors are delivered to the caller's error callback and set on the future
returned by the store; nothing in this package retries them.
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Config errors: 1xxx
ERROR_CONFIG_INVALID = 1001

# Query errors: 3xxx
ERROR_QUERY_UNRECOGNIZED_FILTER = 3001
ERROR_QUERY_INVALID_RANGE = 3002
ERROR_QUERY_INVALID_FILTER = 3003

# Identifier errors: 4xxx
ERROR_ID_SPACE_EXHAUSTED = 4001

# Storage errors: 5xxx
ERROR_STORAGE_CONNECTION = 5001
ERROR_STORAGE_WRITE = 5002
ERROR_STORAGE_READ = 5003
ERROR_STORAGE_UNKNOWN_INDEX = 5004
ERROR_STORAGE_CLOSED = 5005


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class CommsLogError(Exception):
    """
    Base exception for all CommsLog errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Config Errors
# =============================================================================


@dataclass
class ConfigError(CommsLogError):
    """Raised when a store configuration cannot be loaded or validated."""

    path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid configuration {self.path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context.update({
            "path": self.path,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Query Errors
# =============================================================================


@dataclass
class QueryError(CommsLogError):
    """
    Base class for query construction errors.

    These errors occur before the database is touched, while a filter is
    being translated into an index query.
    """


@dataclass
class UnrecognizedFilterError(QueryError):
    """Raised when a filter names none of the searchable dimensions."""

    filter: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Filter does not set any searchable field"
        if self.code == 0:
            self.code = ERROR_QUERY_UNRECOGNIZED_FILTER
        if not self.suggestion:
            self.suggestion = "Set one of contactId, from, to, service, type or tel"
        self.context["filter"] = self.filter


@dataclass
class InvalidFilterError(QueryError):
    """Raised when a filter sets a searchable field but fails validation."""

    filter: dict[str, Any] = field(default_factory=dict)
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid filter: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_QUERY_INVALID_FILTER
        self.context.update({
            "filter": self.filter,
            "underlying_error": self.underlying_error,
        })


@dataclass
class InvalidKeyRangeError(QueryError):
    """Raised when a bounded key range is inverted or its bounds are not comparable."""

    lower: Any = None
    upper: Any = None

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Lower bound {self.lower!r} is greater than upper bound {self.upper!r}"
        if self.code == 0:
            self.code = ERROR_QUERY_INVALID_RANGE
        self.context.update({
            "lower": self.lower,
            "upper": self.upper,
        })


# =============================================================================
# Identifier Errors
# =============================================================================


@dataclass
class IdentifierSpaceExhaustedError(CommsLogError):
    """
    Raised when every generated identifier collided with a stored record.

    Attributes:
        attempts: How many identifiers were generated and probed
    """

    attempts: int = 0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"No free identifier found after {self.attempts} attempts"
        if self.code == 0:
            self.code = ERROR_ID_SPACE_EXHAUSTED
        if not self.suggestion:
            self.suggestion = "Increase max_id_attempts in the store config"
        self.context["attempts"] = self.attempts


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(CommsLogError):
    """
    Base class for storage/database errors.

    Attributes:
        operation: The operation that failed (e.g., "put", "get_by_index")
    """

    operation: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["operation"] = self.operation


@dataclass
class StorageConnectionError(StorageError):
    """
    Raised when the database cannot be opened or upgraded.

    The store keeps the instance and hands the same one to every later
    caller, so nobody waits on a connection that will never arrive.
    """

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to open database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORAGE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the database path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class StorageTransactionError(StorageError):
    """Base class for failures of a single put/delete/scan."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageWriteError(StorageTransactionError):
    """Raised when a write operation fails."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database write failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        super().__post_init__()


@dataclass
class StorageReadError(StorageTransactionError):
    """Raised when a read operation fails."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()


@dataclass
class UnknownIndexError(StorageTransactionError):
    """Raised when a query names an index the store does not have."""

    index_name: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unknown index: {self.index_name}"
        if self.code == 0:
            self.code = ERROR_STORAGE_UNKNOWN_INDEX
        super().__post_init__()
        self.context["index_name"] = self.index_name


@dataclass
class StoreClosedError(StorageError):
    """Raised when an operation is submitted while the store is shutting down."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = "Log store is closed"
        if self.code == 0:
            self.code = ERROR_STORAGE_CLOSED
        super().__post_init__()
