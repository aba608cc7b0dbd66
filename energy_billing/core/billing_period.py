"""
Billing periods and contract/period overlap.

A billing period is a calendar month 'YYYY-MM'. A contract is billed for a
period only over the intersection of its validity interval with that month.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator, Optional

from energy_billing.core.errors import InvalidPeriodError, NotBillableError

PERIOD_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True)
class DateRange:
    """Inclusive date range."""

    start: date
    end: date

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"Range start {self.start} is after end {self.end}")

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def hours(self) -> int:
        return self.days * 24

    def __contains__(self, day: date) -> bool:
        return self.start <= day <= self.end

    def iter_days(self) -> Iterator[date]:
        for offset in range(self.days):
            yield self.start + timedelta(days=offset)


@dataclass(frozen=True)
class BillingPeriod:
    """Calendar month identified as 'YYYY-MM'."""

    year: int
    month: int

    @classmethod
    def parse(cls, value: str) -> "BillingPeriod":
        """
        Parses a period in format 'YYYY-MM'.

        Args:
            value: Period string, e.g. '2024-03'

        Returns:
            BillingPeriod

        Raises:
            InvalidPeriodError: when the string is not a valid month
        """
        match = PERIOD_PATTERN.match(value or "")
        if not match:
            raise InvalidPeriodError(f"Invalid period format. Expected YYYY-MM, got: {value}")
        year, month = int(match.group(1)), int(match.group(2))
        if not 1 <= month <= 12 or year < 1:
            raise InvalidPeriodError(f"Invalid period: {value}")
        return cls(year, month)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    @property
    def date_range(self) -> DateRange:
        return DateRange(self.start, self.end)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


def resolve_billable_range(
    start_date: date,
    end_date: Optional[date],
    period: BillingPeriod
) -> DateRange:
    """
    Returns the part of the period covered by a contract.

    Args:
        start_date: Contract start date
        end_date: Contract end date (None for open-ended contracts)
        period: Billing period

    Returns:
        Intersection of [start_date, end_date] with the period month

    Raises:
        NotBillableError: the contract starts after the period or ended before it
    """
    billable_start = max(start_date, period.start)
    billable_end = period.end if end_date is None else min(end_date, period.end)

    if billable_start > billable_end:
        raise NotBillableError(
            f"Contract interval {start_date}..{end_date or 'open'} does not overlap period {period}"
        )
    return DateRange(billable_start, billable_end)
