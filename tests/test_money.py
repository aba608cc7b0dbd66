"""
Tests for money and energy rounding helpers.
"""

from decimal import Decimal

from energy_billing.core.money import format_kwh, format_money, round2, round_kwh, to_decimal


class TestRounding:
    """ROUND_HALF_UP to cents and watt-hours."""

    def test_round2_half_up(self):
        """Test halves round away from zero."""
        assert round2(Decimal("0.125")) == Decimal("0.13")
        assert round2(Decimal("2.675")) == Decimal("2.68")

    def test_round_kwh(self):
        """Test energy is kept to three decimals."""
        assert round_kwh(Decimal("720")) == Decimal("720.000")
        assert round_kwh(Decimal("0.0005")) == Decimal("0.001")

    def test_float_goes_through_str(self):
        """Test floats convert without binary noise."""
        assert to_decimal(0.1) == Decimal("0.1")


class TestFormatting:
    """Fixed-point strings for the API."""

    def test_format_money(self):
        """Test money always has two decimals."""
        assert format_money(Decimal("108")) == "108.00"
        assert format_money(42.5) == "42.50"
        assert format_money("0.005") == "0.01"

    def test_format_kwh(self):
        """Test energy always has three decimals."""
        assert format_kwh(Decimal("720")) == "720.000"
        assert format_kwh(Decimal("240.0")) == "240.000"
