"""
Aggregation of hourly readings for billing.

Handles:
- Gaps (hours without a reading count as zero usage and are counted)
- Estimated readings (counted, priced like real ones)
- Quality filtering (all qualities by default)
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

from energy_billing.core.billing_period import DateRange
from energy_billing.models.meter import ReadingQuality


@dataclass(frozen=True)
class ReadingAggregate:
    """Result of aggregating one meter's readings over a date range."""

    date_range: DateRange
    total_kwh: Decimal
    reading_count: int
    gap_hours: int
    estimated_hours: int
    excluded_hours: int = 0
    daily_kwh: Dict[date, Decimal] = field(default_factory=dict)

    @property
    def expected_hours(self) -> int:
        return self.date_range.hours

    @property
    def has_gaps(self) -> bool:
        return self.gap_hours > 0


def aggregate_readings(
    readings: Iterable,
    date_range: DateRange,
    qualities: Optional[Iterable[ReadingQuality]] = None
) -> ReadingAggregate:
    """
    Sums readings whose date falls in the range.

    Args:
        readings: Objects with date, hour, kwh and quality attributes
        date_range: Inclusive range to aggregate
        qualities: Qualities to include (None = all)

    Returns:
        ReadingAggregate with the exact (unrounded) kWh total
    """
    allowed = None if qualities is None else {ReadingQuality(q) for q in qualities}

    # Last reading per (date, hour) wins
    by_hour: Dict[Tuple[date, int], object] = {}
    for reading in readings:
        if reading.date not in date_range:
            continue
        by_hour[(reading.date, reading.hour)] = reading

    total = Decimal("0")
    daily: Dict[date, Decimal] = defaultdict(Decimal)
    estimated = 0
    excluded = 0

    for (day, _hour), reading in sorted(by_hour.items()):
        quality = ReadingQuality(reading.quality) if reading.quality else ReadingQuality.REAL
        if allowed is not None and quality not in allowed:
            excluded += 1
            continue
        kwh = reading.kwh if isinstance(reading.kwh, Decimal) else Decimal(str(reading.kwh))
        total += kwh
        daily[day] += kwh
        if quality is ReadingQuality.ESTIMATED:
            estimated += 1

    return ReadingAggregate(
        date_range=date_range,
        total_kwh=total,
        reading_count=len(by_hour) - excluded,
        gap_hours=max(0, date_range.hours - len(by_hour)),
        estimated_hours=estimated,
        excluded_hours=excluded,
        daily_kwh=dict(daily),
    )
