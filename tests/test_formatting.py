"""Tests for size, duration and value formatting."""

from datetime import date, datetime, timedelta
from decimal import Decimal

from hubpanel.utils.formatting import format_bytes, format_uptime, to_int, to_number, to_text


class TestFormatBytes:
    """Test pg_size_pretty style sizes."""

    def test_small_sizes_stay_in_bytes(self):
        assert format_bytes(0) == "0 bytes"
        assert format_bytes(8192) == "8192 bytes"

    def test_larger_units(self):
        assert format_bytes(20480) == "20 kB"
        assert format_bytes(50 * 1024 * 1024) == "50 MB"
        assert format_bytes(12 * 1024 ** 3) == "12 GB"

    def test_missing_size(self):
        assert format_bytes(None) == "0 bytes"


class TestFormatUptime:
    """Test compact durations."""

    def test_days_hours_minutes(self):
        assert format_uptime(3 * 86400 + 4 * 3600 + 12 * 60 + 5) == "3d 4h 12m"

    def test_short_durations(self):
        assert format_uptime(45) == "45s"
        assert format_uptime(3600) == "1h"

    def test_accepts_timedelta_and_text(self):
        assert format_uptime(timedelta(minutes=5)) == "5m"
        assert format_uptime("90.7") == "1m"
        assert format_uptime(None) is None


class TestConversions:
    """Test lenient conversions of engine values."""

    def test_to_text(self):
        assert to_text(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05"
        assert to_text(date(2024, 1, 2)) == "2024-01-02"
        assert to_text(None) is None
        assert to_text(5) == "5"

    def test_to_number(self):
        assert to_number(Decimal("1.5")) == 1.5
        assert to_number("bad") == 0
        assert to_number(None, default=-1) == -1

    def test_to_int(self):
        assert to_int("42") == 42
        assert to_int(None) == 0
        assert to_int("x", default=7) == 7
