"""
Unit Tests - Analysis Windows and Numeric Helpers
"""
from datetime import datetime, timedelta

import pytest

from snapshot_engine.engine.exceptions import InvalidWindowError
from snapshot_engine.engine.numeric import as_count, as_number, round_half_up, safe_ratio
from snapshot_engine.engine.windows import resolve_window

NOW = datetime(2025, 6, 30, 12, 0, 0)


class TestResolveWindow:
    """Tests for resolve_window"""

    def test_default_trailing_window(self):
        window = resolve_window(now=NOW)

        assert window.days == 30
        assert window.end == NOW
        assert window.start == NOW - timedelta(days=30)
        assert not window.explicit

    @pytest.mark.parametrize("days,expected", [(7, 7), (7.9, 7), (0, 1), (0.4, 1), (-5, 1)])
    def test_days_floored_with_minimum(self, days, expected):
        assert resolve_window(days, now=NOW).days == expected

    def test_non_finite_days_rejected(self):
        with pytest.raises(InvalidWindowError):
            resolve_window(float("nan"), now=NOW)

    def test_explicit_window(self):
        """Test explicit bounds and rounded day count"""
        start = datetime(2025, 6, 1)
        end = datetime(2025, 6, 15, 13, 0)

        window = resolve_window(window_start=start, window_end=end, now=NOW)

        assert window.explicit
        assert (window.start, window.end) == (start, end)
        assert window.days == 15

    def test_short_explicit_window_is_one_day(self):
        start = datetime(2025, 6, 1)
        window = resolve_window(window_start=start, window_end=start + timedelta(hours=2))

        assert window.days == 1

    def test_explicit_window_overrides_days(self):
        start = datetime(2025, 6, 1)
        window = resolve_window(90, window_start=start, window_end=start + timedelta(days=3))

        assert window.days == 3

    @pytest.mark.parametrize("offset", [timedelta(0), timedelta(days=-1)])
    def test_inverted_window_rejected(self, offset):
        start = datetime(2025, 6, 1)
        with pytest.raises(InvalidWindowError, match="must be after start"):
            resolve_window(window_start=start, window_end=start + offset)

    def test_incomplete_window_rejected(self):
        with pytest.raises(InvalidWindowError):
            resolve_window(window_start=datetime(2025, 6, 1))

    def test_contains(self):
        window = resolve_window(1, now=NOW)

        assert window.contains(NOW)
        assert not window.contains(NOW, end_inclusive=False)
        assert window.contains(window.start)
        assert not window.contains(window.start - timedelta(microseconds=1))


class TestNumeric:
    """Tests for numeric coercion"""

    @pytest.mark.parametrize(
        "value,expected",
        [(None, 0.0), ("12.5", 12.5), ("abc", 0.0), (float("nan"), 0.0), (float("inf"), 0.0), (3, 3.0)],
    )
    def test_as_number(self, value, expected):
        assert as_number(value) == expected

    def test_as_count(self):
        assert as_count(None) == 0
        assert as_count(-2) == 0
        assert as_count(4.7) == 4

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(0.125, 2) == 0.13
        assert round_half_up(14.2857, 2) == 14.29

    def test_safe_ratio(self):
        assert safe_ratio(1, 0) == 0.0
        assert safe_ratio(3, 4) == 0.75
