"""
Schema definitions for CommsLog.

This module defines the Pydantic models used throughout CommsLog:
- LogEntry: A single communication log record (call, message)
- LogFilter: The application-level search filter accepted by LogManager
- StoreConfig: Where the database lives and how the store behaves

Design Decisions:
    - id, service and timestamp are frozen once the entry exists
    - Descriptive fields are mutable and validated on assignment
    - Both snake_case names and the camelCase wire names are accepted
    - Unknown keys are rejected
"""

from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from commslog.errors import ConfigError


# =============================================================================
# Enums
# =============================================================================


class ScanOrder(str, Enum):
    """Direction a cursor walks an index."""

    NEXT = "next"
    PREV = "prev"


class EntryType(str, Enum):
    """Well-known values for LogEntry.type. Other strings are accepted too."""

    INCOMING = "incoming"
    OUTGOING = "outgoing"
    MISSED = "missed"


# =============================================================================
# Entry Model
# =============================================================================


class LogEntry(BaseModel):
    """
    A single entry in the communications log.

    Entries are normally created through LogStore.get_log_entry_properties,
    which allocates a collision-checked id, and then filled in by the caller
    before being stored with put. Storing an entry whose id already exists
    replaces the stored one.

    Attributes:
        id: Primary key, never changes
        service: Originating service (e.g. "Telephony"), never changes
        timestamp: Creation time in epoch milliseconds, never changes
        type: "incoming", "outgoing", "missed" or any service-specific value
        status: Service-specific status
        contact_id: Contact references, each one searchable on its own
        tel: Phone numbers involved, each one searchable on its own
        object_id: Reference to a related object (e.g. a message body)
        title: Optional short text
        description: Optional long text
        extra: Arbitrary JSON-serialisable payload
    """

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        validate_assignment=True,
    )

    id: str = Field(..., min_length=1, frozen=True)
    service: str = Field(..., frozen=True)
    timestamp: int = Field(..., frozen=True, description="Epoch milliseconds")
    type: str | None = None
    status: str | None = None
    contact_id: list[str | int] = Field(default_factory=list, alias="contactId")
    tel: list[str] = Field(default_factory=list)
    object_id: Any = Field(default=None, alias="objectId")
    title: str | None = None
    description: str | None = None
    extra: Any = None

    def to_record(self) -> dict[str, Any]:
        """Return the entry as a plain dict using the wire (camelCase) names."""
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# Filter Model
# =============================================================================


class LogFilter(BaseModel):
    """
    Search filter for LogManager.find and LogManager.clear.

    Several fields may be set, but only one index is ever queried. The first
    set dimension wins, in this order: contact_id, from_/to, service, type, tel.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    contact_id: str | int | None = Field(default=None, alias="contactId")
    from_: int | None = Field(default=None, alias="from")
    to: int | None = None
    service: str | None = None
    type: str | None = None
    tel: str | None = None
    ascending: bool = Field(
        default=False,
        description="Return oldest first instead of newest first",
    )

    def is_empty(self) -> bool:
        """Whether no searchable dimension is set."""
        return all(
            value is None
            for value in (
                self.contact_id,
                self.from_,
                self.to,
                self.service,
                self.type,
                self.tel,
            )
        )


# =============================================================================
# Config Model
# =============================================================================


class StoreConfig(BaseModel):
    """
    Configuration for a LogStore.

    Attributes:
        db_path: SQLite database file, or ":memory:"
        version: Schema version; any change recreates the store and loses its data
        max_id_attempts: How many identifiers to try before giving up
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    db_path: str = Field(
        default="commslog.db",
        description="SQLite database file",
    )
    version: int = Field(
        default=1,
        description="Schema version (changing it drops all stored entries)",
        ge=1,
    )
    max_id_attempts: int = Field(
        default=16,
        description="Bound on identifier collision retries",
        ge=1,
    )


def load_config(path: Path | str) -> StoreConfig:
    """
    Load a store configuration from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated StoreConfig object

    Raises:
        ConfigError: If the file can't be read or doesn't match the schema
    """
    path = Path(path)
    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(path=str(path), underlying_error=str(e)) from e

    return _validate_config(data, str(path))


def load_config_from_string(content: str) -> StoreConfig:
    """Load a store configuration from a YAML string."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(path="<string>", underlying_error=str(e)) from e
    return _validate_config(data, "<string>")


def _validate_config(data: Any, source: str) -> StoreConfig:
    # An empty file means "all defaults"
    try:
        return StoreConfig.model_validate(data or {})
    except ValidationError as e:
        raise ConfigError(path=source, underlying_error=str(e)) from e
