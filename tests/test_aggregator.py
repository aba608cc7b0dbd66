"""
Tests for reading aggregation: gaps, estimated data, quality filter.
"""

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from energy_billing.core.billing_period import DateRange
from energy_billing.models.meter import ReadingQuality
from energy_billing.services.billing.aggregator import aggregate_readings

MARCH_1_TO_2 = DateRange(date(2024, 3, 1), date(2024, 3, 2))


def create_reading(day: int, hour: int, kwh: str = "1.0", quality: str = None, month: int = 3):
    """Helper for building reading-like objects."""
    return SimpleNamespace(date=date(2024, month, day), hour=hour, kwh=Decimal(kwh), quality=quality)


class TestAggregateReadings:
    """Totals and gaps."""

    def test_full_coverage(self):
        """Test every hour present."""
        readings = [create_reading(d, h) for d in (1, 2) for h in range(24)]
        result = aggregate_readings(readings, MARCH_1_TO_2)
        assert result.total_kwh == Decimal("48.0")
        assert result.reading_count == 48
        assert result.gap_hours == 0
        assert not result.has_gaps
        assert result.expected_hours == 48

    def test_gaps_count_as_zero_usage(self):
        """Test a missing day adds nothing and is reported as gap hours."""
        readings = [create_reading(1, h) for h in range(24)]
        result = aggregate_readings(readings, MARCH_1_TO_2)
        assert result.total_kwh == Decimal("24.0")
        assert result.gap_hours == 24
        assert result.has_gaps

    def test_no_readings(self):
        """Test an empty meter."""
        result = aggregate_readings([], MARCH_1_TO_2)
        assert result.total_kwh == Decimal("0")
        assert result.gap_hours == 48
        assert result.reading_count == 0

    def test_readings_outside_range_excluded(self):
        """Test readings before and after the range are ignored."""
        readings = [
            create_reading(29, 0, "5.0", month=2),
            create_reading(1, 0, "1.5"),
            create_reading(3, 0, "7.0"),
        ]
        result = aggregate_readings(readings, MARCH_1_TO_2)
        assert result.total_kwh == Decimal("1.5")
        assert result.reading_count == 1

    def test_duplicate_key_counted_once(self):
        """Test the last reading for an hour wins."""
        readings = [create_reading(1, 5, "2.0"), create_reading(1, 5, "3.0")]
        result = aggregate_readings(readings, MARCH_1_TO_2)
        assert result.total_kwh == Decimal("3.0")
        assert result.reading_count == 1

    def test_daily_breakdown(self):
        """Test kWh per day."""
        readings = [create_reading(1, 0, "1.25"), create_reading(1, 1, "0.75"), create_reading(2, 0, "4.0")]
        result = aggregate_readings(readings, MARCH_1_TO_2)
        assert result.daily_kwh == {date(2024, 3, 1): Decimal("2.00"), date(2024, 3, 2): Decimal("4.0")}

    def test_sum_is_exact(self):
        """Test small values sum without float error."""
        readings = [create_reading(1, h, "0.001") for h in range(24)]
        result = aggregate_readings(readings, MARCH_1_TO_2)
        assert result.total_kwh == Decimal("0.024")

    def test_float_kwh_values(self):
        """Test float kWh from the database are summed exactly."""
        readings = [SimpleNamespace(date=date(2024, 3, 1), hour=h, kwh=0.1, quality=None) for h in range(10)]
        result = aggregate_readings(readings, MARCH_1_TO_2)
        assert result.total_kwh == Decimal("1.0")


class TestReadingQuality:
    """Estimated readings and the quality filter."""

    def test_estimated_counted_and_included_by_default(self):
        """Test estimated readings are billed and counted."""
        readings = [
            create_reading(1, 0, "1.0", "REAL"),
            create_reading(1, 1, "2.0", "ESTIMATED"),
            create_reading(1, 2, "3.0"),
        ]
        result = aggregate_readings(readings, MARCH_1_TO_2)
        assert result.total_kwh == Decimal("6.0")
        assert result.estimated_hours == 1
        assert result.excluded_hours == 0

    def test_filter_real_only(self):
        """Test filtering to REAL (missing quality counts as REAL)."""
        readings = [
            create_reading(1, 0, "1.0", "REAL"),
            create_reading(1, 1, "2.0", "ESTIMATED"),
            create_reading(1, 2, "3.0"),
        ]
        result = aggregate_readings(readings, MARCH_1_TO_2, qualities=[ReadingQuality.REAL])
        assert result.total_kwh == Decimal("4.0")
        assert result.estimated_hours == 0
        assert result.excluded_hours == 1
        assert result.reading_count == 2
        # Filtered readings are not gaps
        assert result.gap_hours == 45

    def test_filter_accepts_strings(self):
        """Test quality names as plain strings."""
        readings = [create_reading(1, 0, "2.0", "ESTIMATED")]
        result = aggregate_readings(readings, MARCH_1_TO_2, qualities=["ESTIMATED"])
        assert result.total_kwh == Decimal("2.0")
