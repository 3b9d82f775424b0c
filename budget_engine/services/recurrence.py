"""Recurrence pattern math.

Occurrence dates are computed as ``first + k * step`` from the first anchored
date on or after the series start, never from the previous occurrence. A
day-31 monthly series therefore returns to the 31st after a short month, and
a bi-weekly series keeps its original 14-day cadence across skips and pauses.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta

from budget_engine.models.recurring import RecurrenceFrequency
from budget_engine.services.errors import ValidationError

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

_DAY_UNITS = {
    RecurrenceFrequency.DAILY: 1,
    RecurrenceFrequency.WEEKLY: 7,
    RecurrenceFrequency.BIWEEKLY: 7,
}
_MONTH_UNITS = {
    RecurrenceFrequency.MONTHLY: 1,
    RecurrenceFrequency.QUARTERLY: 1,
    RecurrenceFrequency.YEARLY: 12,
}
FIXED_INTERVALS = {
    RecurrenceFrequency.BIWEEKLY: 2,
    RecurrenceFrequency.QUARTERLY: 3,
}
_WEEKDAY_FREQUENCIES = {RecurrenceFrequency.WEEKLY, RecurrenceFrequency.BIWEEKLY}
_DAY_OF_MONTH_FREQUENCIES = {
    RecurrenceFrequency.MONTHLY,
    RecurrenceFrequency.QUARTERLY,
    RecurrenceFrequency.YEARLY,
}


@dataclass(frozen=True)
class RecurrencePattern:
    """Immutable recurrence rule.

    ``interval`` counts base units: days for DAILY, weeks for WEEKLY and
    BIWEEKLY (always 2), months for MONTHLY and QUARTERLY (always 3), years
    for YEARLY. Anchors that do not apply to the frequency are dropped so
    equal schedules compare equal.
    """

    frequency: RecurrenceFrequency
    interval: int = 1
    day_of_week: int | None = None
    day_of_month: int | None = None
    month_of_year: int | None = None

    def __post_init__(self) -> None:
        frequency = RecurrenceFrequency(self.frequency)
        object.__setattr__(self, "frequency", frequency)

        if self.interval is None or self.interval < 1:
            raise ValidationError(f"Interval must be a positive integer, got {self.interval}")
        fixed = FIXED_INTERVALS.get(frequency)
        if fixed is not None and self.interval != fixed:
            raise ValidationError(f"{frequency.value} patterns use a fixed interval of {fixed}")

        if frequency in _WEEKDAY_FREQUENCIES:
            if self.day_of_week is None:
                raise ValidationError(f"day_of_week is required for {frequency.value} patterns")
            if not 0 <= self.day_of_week <= 6:
                raise ValidationError(f"day_of_week must be 0-6, got {self.day_of_week}")
        else:
            object.__setattr__(self, "day_of_week", None)

        if frequency in _DAY_OF_MONTH_FREQUENCIES:
            if self.day_of_month is None:
                raise ValidationError(f"day_of_month is required for {frequency.value} patterns")
            if not 1 <= self.day_of_month <= 31:
                raise ValidationError(f"day_of_month must be 1-31, got {self.day_of_month}")
        else:
            object.__setattr__(self, "day_of_month", None)

        if frequency == RecurrenceFrequency.YEARLY:
            if self.month_of_year is None:
                raise ValidationError("month_of_year is required for yearly patterns")
            if not 1 <= self.month_of_year <= 12:
                raise ValidationError(f"month_of_year must be 1-12, got {self.month_of_year}")
            # 2000 is a leap year, so Feb 29 stays valid and clamps in other years
            if self.day_of_month > calendar.monthrange(2000, self.month_of_year)[1]:
                raise ValidationError(
                    f"{MONTH_NAMES[self.month_of_year - 1]} has no day {self.day_of_month}"
                )
        else:
            object.__setattr__(self, "month_of_year", None)

    @classmethod
    def daily(cls, interval: int = 1) -> RecurrencePattern:
        return cls(RecurrenceFrequency.DAILY, interval)

    @classmethod
    def weekly(cls, day_of_week: int, interval: int = 1) -> RecurrencePattern:
        return cls(RecurrenceFrequency.WEEKLY, interval, day_of_week=day_of_week)

    @classmethod
    def biweekly(cls, day_of_week: int) -> RecurrencePattern:
        return cls(RecurrenceFrequency.BIWEEKLY, 2, day_of_week=day_of_week)

    @classmethod
    def monthly(cls, day_of_month: int, interval: int = 1) -> RecurrencePattern:
        return cls(RecurrenceFrequency.MONTHLY, interval, day_of_month=day_of_month)

    @classmethod
    def quarterly(cls, day_of_month: int) -> RecurrencePattern:
        return cls(RecurrenceFrequency.QUARTERLY, 3, day_of_month=day_of_month)

    @classmethod
    def yearly(cls, month_of_year: int, day_of_month: int, interval: int = 1) -> RecurrencePattern:
        return cls(
            RecurrenceFrequency.YEARLY,
            interval,
            day_of_month=day_of_month,
            month_of_year=month_of_year,
        )

    @property
    def step_days(self) -> int:
        """Step in days for day-based frequencies, 0 otherwise."""
        return _DAY_UNITS.get(self.frequency, 0) * self.interval

    @property
    def step_months(self) -> int:
        """Step in months for month-based frequencies, 0 otherwise."""
        return _MONTH_UNITS.get(self.frequency, 0) * self.interval

    def describe(self) -> str:
        """Human-readable summary, e.g. "Monthly on day 15"."""
        n = self.interval
        if self.frequency == RecurrenceFrequency.DAILY:
            return "Daily" if n == 1 else f"Every {n} days"
        if self.frequency == RecurrenceFrequency.WEEKLY:
            weekday = WEEKDAY_NAMES[self.day_of_week]
            return f"Weekly on {weekday}" if n == 1 else f"Every {n} weeks on {weekday}"
        if self.frequency == RecurrenceFrequency.BIWEEKLY:
            return f"Every 2 weeks on {WEEKDAY_NAMES[self.day_of_week]}"
        if self.frequency == RecurrenceFrequency.MONTHLY:
            prefix = "Monthly" if n == 1 else f"Every {n} months"
            return f"{prefix} on day {self.day_of_month}"
        if self.frequency == RecurrenceFrequency.QUARTERLY:
            return f"Quarterly on day {self.day_of_month}"
        prefix = "Yearly" if n == 1 else f"Every {n} years"
        return f"{prefix} on {MONTH_NAMES[self.month_of_year - 1]} {self.day_of_month}"


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, clamping the day to the last valid day of the month."""
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    total = year * 12 + (month - 1) + months
    return total // 12, total % 12 + 1


def first_occurrence(pattern: RecurrencePattern, start_date: date) -> date:
    """Return the first date on or after ``start_date`` that satisfies the anchors."""
    if pattern.step_days:
        if pattern.day_of_week is None:
            return start_date
        return start_date + timedelta(days=(pattern.day_of_week - start_date.weekday()) % 7)

    if pattern.frequency == RecurrenceFrequency.YEARLY:
        candidate = clamp_day(start_date.year, pattern.month_of_year, pattern.day_of_month)
        if candidate < start_date:
            candidate = clamp_day(start_date.year + 1, pattern.month_of_year, pattern.day_of_month)
        return candidate

    candidate = clamp_day(start_date.year, start_date.month, pattern.day_of_month)
    if candidate < start_date:
        year, month = _add_months(start_date.year, start_date.month, 1)
        candidate = clamp_day(year, month, pattern.day_of_month)
    return candidate


def nth_occurrence(pattern: RecurrencePattern, first: date, n: int) -> date:
    """Return occurrence ``n`` (0-based) counted from ``first``."""
    if pattern.step_days:
        return first + timedelta(days=n * pattern.step_days)
    year, month = _add_months(first.year, first.month, n * pattern.step_months)
    return clamp_day(year, month, pattern.day_of_month)


def _index_near(pattern: RecurrencePattern, first: date, target: date) -> int:
    # Never overshoots: the returned occurrence is on or before ``target``
    if target <= first:
        return 0
    if pattern.step_days:
        return (target - first).days // pattern.step_days
    months = (target.year - first.year) * 12 + (target.month - first.month)
    return max(0, months // pattern.step_months - 1)


def occurrences_between(
    pattern: RecurrencePattern,
    start_date: date,
    end_date: date | None,
    range_from: date,
    range_to: date,
) -> list[date]:
    """Scheduled dates in ``[max(range_from, start), min(range_to, end)]``, ascending."""
    lower = max(range_from, start_date)
    upper = range_to if end_date is None else min(range_to, end_date)
    if lower > upper:
        return []

    first = first_occurrence(pattern, start_date)
    n = _index_near(pattern, first, lower)
    current = nth_occurrence(pattern, first, n)
    dates: list[date] = []
    while current <= upper:
        if current >= lower:
            dates.append(current)
        n += 1
        current = nth_occurrence(pattern, first, n)
    return dates


def next_occurrence_after(
    pattern: RecurrencePattern,
    start_date: date,
    end_date: date | None,
    after: date,
) -> date | None:
    """First scheduled date strictly after ``after``; None once past ``end_date``."""
    first = first_occurrence(pattern, start_date)
    n = _index_near(pattern, first, after)
    current = nth_occurrence(pattern, first, n)
    while current <= after:
        n += 1
        current = nth_occurrence(pattern, first, n)
    if end_date is not None and current > end_date:
        return None
    return current


def is_scheduled(
    pattern: RecurrencePattern,
    start_date: date,
    end_date: date | None,
    candidate: date,
) -> bool:
    return occurrences_between(pattern, start_date, end_date, candidate, candidate) == [candidate]
