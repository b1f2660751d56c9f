"""
Index queries for CommsLog.

An IndexQuery names one index of the log store, an optional lower and upper
bound, and the direction to walk the index in. The store turns its KeyRange
into a bounded cursor scan.

Range rules:
    - No bounds            -> whole index (key_range() returns None)
    - lower == upper       -> exact match
    - lower and upper      -> lower <= key <= upper
    - only upper           -> key <= upper
    - only lower           -> key >= lower

A bound counts as set when it is not None, so 0 and "" are usable bounds.
"""

from dataclasses import dataclass
from typing import Any

from commslog.errors import InvalidKeyRangeError
from commslog.schema import ScanOrder


@dataclass(frozen=True)
class KeyRange:
    """
    Bounds for a cursor scan over an index.

    A None bound means the range is open on that side. The *_open flags make
    the matching bound exclusive.
    """

    lower: Any = None
    upper: Any = None
    lower_open: bool = False
    upper_open: bool = False

    @classmethod
    def only(cls, value: Any) -> "KeyRange":
        """Range matching a single key."""
        return cls(lower=value, upper=value)

    @classmethod
    def bound(
        cls,
        lower: Any,
        upper: Any,
        lower_open: bool = False,
        upper_open: bool = False,
    ) -> "KeyRange":
        """Range between two keys, inclusive unless told otherwise."""
        try:
            inverted = lower > upper
        except TypeError as e:
            raise InvalidKeyRangeError(
                message=f"Bounds {lower!r} and {upper!r} cannot be compared",
                lower=lower,
                upper=upper,
            ) from e
        if inverted:
            raise InvalidKeyRangeError(lower=lower, upper=upper)
        return cls(lower=lower, upper=upper, lower_open=lower_open, upper_open=upper_open)

    @classmethod
    def lower_bound(cls, lower: Any, exclusive: bool = False) -> "KeyRange":
        """Range of keys at or above lower."""
        return cls(lower=lower, lower_open=exclusive)

    @classmethod
    def upper_bound(cls, upper: Any, exclusive: bool = False) -> "KeyRange":
        """Range of keys at or below upper."""
        return cls(upper=upper, upper_open=exclusive)

    @property
    def is_exact(self) -> bool:
        """Whether the range matches exactly one key."""
        return (
            self.lower is not None
            and self.lower == self.upper
            and not self.lower_open
            and not self.upper_open
        )


class IndexQuery:
    """
    Builder for a single-index query.

    Usage:
        query = IndexQuery("timestamp")
        query.set_lower_filter_value(1000)
        query.invert_order()              # oldest first
        store.get_by_index(query)

    The default order is ScanOrder.PREV, newest (highest key) first.
    """

    def __init__(self, index_name: str) -> None:
        self._index_name = index_name
        self._lower: Any = None
        self._upper: Any = None
        self._order = ScanOrder.PREV

    def __repr__(self) -> str:
        return (
            f"IndexQuery(index_name={self._index_name!r}, "
            f"lower={self._lower!r}, upper={self._upper!r}, "
            f"order={self._order.value!r})"
        )

    @property
    def index_name(self) -> str:
        return self._index_name

    @property
    def order(self) -> ScanOrder:
        return self._order

    @property
    def lower(self) -> Any:
        return self._lower

    @property
    def upper(self) -> Any:
        return self._upper

    def set_filter_value(self, value: Any) -> "IndexQuery":
        """Match a single key by setting both bounds to it."""
        self._lower = value
        self._upper = value
        return self

    def set_lower_filter_value(self, value: Any) -> "IndexQuery":
        self._lower = value
        return self

    def set_upper_filter_value(self, value: Any) -> "IndexQuery":
        self._upper = value
        return self

    def invert_order(self) -> "IndexQuery":
        """Flip between newest-first and oldest-first."""
        self._order = ScanOrder.NEXT if self._order == ScanOrder.PREV else ScanOrder.PREV
        return self

    def key_range(self) -> KeyRange | None:
        """
        Build the key range for the current bounds.

        Returns:
            A KeyRange, or None when no bound is set (scan the whole index)

        Raises:
            InvalidKeyRangeError: If the lower bound is above the upper bound
        """
        lower, upper = self._lower, self._upper

        if lower is None and upper is None:
            return None
        if lower is not None and upper is not None:
            if lower == upper:
                return KeyRange.only(lower)
            return KeyRange.bound(lower, upper)
        if upper is not None:
            return KeyRange.upper_bound(upper)
        return KeyRange.lower_bound(lower)
