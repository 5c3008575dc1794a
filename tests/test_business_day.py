"""
Tests for POS timestamp localization and the 4 AM business day cutoff.
"""
from datetime import date, datetime
import pytz

from sr_integration.core.business_day import (
    get_business_date,
    localize_pos_timestamp,
    BUSINESS_DAY_START_HOUR,
)


class TestLocalizePosTimestamp:
    """SR sends wall-clock time without an offset."""

    def test_naive_is_localized_to_restaurant_timezone(self):
        """Naive timestamp is interpreted in the restaurant timezone."""
        result = localize_pos_timestamp(datetime(2024, 1, 15, 14, 30), "America/Mexico_City")
        assert result.utcoffset().total_seconds() == -6 * 3600
        assert result.hour == 14

    def test_naive_without_timezone_is_utc(self):
        result = localize_pos_timestamp(datetime(2024, 1, 15, 14, 30))
        assert result.tzinfo is not None
        assert result.utcoffset().total_seconds() == 0

    def test_aware_is_kept(self):
        """Timestamps that already carry an offset are not shifted."""
        dt = datetime(2024, 1, 15, 14, 30, tzinfo=pytz.UTC)
        assert localize_pos_timestamp(dt, "America/Mexico_City") is dt


class TestBusinessDate:
    """Test business date calculation with 4 AM cutoff."""

    def test_start_hour(self):
        assert BUSINESS_DAY_START_HOUR == 4

    def test_before_4am_previous_day(self):
        """Sale at 2:00 AM belongs to previous business day."""
        assert get_business_date(datetime(2024, 1, 2, 2, 0)) == date(2024, 1, 1)

    def test_exactly_4am_same_day(self):
        assert get_business_date(datetime(2024, 1, 2, 4, 0)) == date(2024, 1, 2)

    def test_3_59am_previous_day(self):
        assert get_business_date(datetime(2024, 1, 2, 3, 59)) == date(2024, 1, 1)

    def test_aware_converted_before_cutoff(self):
        """09:00 UTC is 03:00 in Mexico City, so it belongs to the previous day."""
        dt = datetime(2024, 1, 2, 9, 0, tzinfo=pytz.UTC)
        assert get_business_date(dt, "America/Mexico_City") == date(2024, 1, 1)

    def test_localized_late_night_sale(self):
        """A 1:30 AM SR sale is attributed to the previous business day."""
        dt = localize_pos_timestamp(datetime(2024, 3, 10, 1, 30), "America/Mexico_City")
        assert get_business_date(dt, "America/Mexico_City") == date(2024, 3, 9)
