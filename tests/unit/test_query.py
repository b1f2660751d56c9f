"""
Unit tests for index queries.

Tests cover:
- Key range selection for every combination of bounds
- Scan order toggling
- SQL generated for column and multi-entry indexes
"""

import pytest

from commslog.errors import InvalidKeyRangeError
from commslog.query import IndexQuery, KeyRange
from commslog.schema import ScanOrder
from commslog.store import INDEXES, build_index_scan


class TestKeyRange:
    def test_only(self) -> None:
        key_range = KeyRange.only("Telephony")
        assert key_range.lower == key_range.upper == "Telephony"
        assert key_range.is_exact

    def test_bound_is_inclusive(self) -> None:
        key_range = KeyRange.bound(1, 5)
        assert (key_range.lower, key_range.upper) == (1, 5)
        assert not key_range.lower_open
        assert not key_range.upper_open
        assert not key_range.is_exact

    def test_bound_rejects_inverted(self) -> None:
        with pytest.raises(InvalidKeyRangeError):
            KeyRange.bound(5, 1)

    def test_bound_rejects_uncomparable(self) -> None:
        with pytest.raises(InvalidKeyRangeError, match="cannot be compared"):
            KeyRange.bound(1, "a")

    def test_half_open(self) -> None:
        assert KeyRange.lower_bound(3) == KeyRange(lower=3)
        assert KeyRange.upper_bound(3, exclusive=True) == KeyRange(upper=3, upper_open=True)


class TestIndexQuery:
    """Tests for IndexQuery.key_range and ordering."""

    def test_no_bounds_scans_everything(self) -> None:
        assert IndexQuery("service").key_range() is None

    def test_equal_bounds_is_exact(self) -> None:
        query = IndexQuery("service").set_filter_value("SMS")
        assert query.key_range() == KeyRange.only("SMS")

    def test_distinct_bounds_use_both_values(self) -> None:
        query = IndexQuery("timestamp")
        query.set_lower_filter_value(1000).set_upper_filter_value(2000)
        assert query.key_range() == KeyRange(lower=1000, upper=2000)

    def test_only_upper(self) -> None:
        query = IndexQuery("timestamp").set_upper_filter_value(1500)
        assert query.key_range() == KeyRange(upper=1500)

    def test_only_lower(self) -> None:
        query = IndexQuery("timestamp").set_lower_filter_value(1500)
        assert query.key_range() == KeyRange(lower=1500)

    def test_zero_is_a_bound(self) -> None:
        query = IndexQuery("timestamp").set_lower_filter_value(0)
        assert query.key_range() == KeyRange(lower=0)

    def test_inverted_bounds(self) -> None:
        query = IndexQuery("timestamp")
        query.set_lower_filter_value(2000).set_upper_filter_value(1000)
        with pytest.raises(InvalidKeyRangeError):
            query.key_range()

    def test_default_order_is_newest_first(self) -> None:
        assert IndexQuery("timestamp").order == ScanOrder.PREV

    def test_invert_order_toggles(self) -> None:
        query = IndexQuery("timestamp")
        assert query.invert_order().order == ScanOrder.NEXT
        assert query.invert_order().order == ScanOrder.PREV

    def test_repr(self) -> None:
        assert "timestamp" in repr(IndexQuery("timestamp"))


class TestBuildIndexScan:
    def test_column_index_exact(self) -> None:
        sql, params = build_index_scan(INDEXES["service"], KeyRange.only("SMS"), ScanOrder.PREV)
        assert "logs.service = ?" in sql
        assert "JOIN" not in sql
        assert sql.endswith("ORDER BY logs.service DESC, logs.id DESC")
        assert params == ["SMS"]

    def test_multi_entry_index_joins(self) -> None:
        sql, params = build_index_scan(INDEXES["tel"], None, ScanOrder.NEXT)
        assert "JOIN logs ON logs.id = log_tels.log_id" in sql
        assert "log_tels.tel IS NOT NULL" in sql
        assert sql.endswith("ASC")
        assert params == []

    def test_range_bounds(self) -> None:
        sql, params = build_index_scan(
            INDEXES["timestamp"],
            KeyRange(lower=1, upper=9, upper_open=True),
            ScanOrder.NEXT,
        )
        assert "logs.timestamp >= ?" in sql
        assert "logs.timestamp < ?" in sql
        assert params == [1, 9]
