from __future__ import annotations
import calendar
from datetime import date, timedelta
from typing import Iterable, Literal, NamedTuple

PeriodPreset = Literal[
    "today",
    "yesterday",
    "this_week",
    "last_week",
    "this_month",
    "last_month",
    "last_7_days",
    "last_30_days",
    "last_90_days",
    "this_year",
    "all_time",
    "custom",
]

PRESET_LABELS: dict[str, str] = {
    "today": "Today",
    "yesterday": "Yesterday",
    "this_week": "This Week",
    "last_week": "Last Week",
    "this_month": "This Month",
    "last_month": "Last Month",
    "last_7_days": "Last 7 Days",
    "last_30_days": "Last 30 Days",
    "last_90_days": "Last 90 Days",
    "this_year": "This Year",
    "all_time": "All Time",
    "custom": "Custom",
}


class InvalidDateRange(ValueError):
    pass


class DateRange(NamedTuple):
    start: date
    end: date

    def validate(self) -> "DateRange":
        if self.end < self.start:
            raise InvalidDateRange(f"end date {self.end.isoformat()} is before start date {self.start.isoformat()}")
        return self

    @property
    def days(self) -> int:
        """Inclusive number of calendar days in the range."""
        return (self.end - self.start).days + 1

    def dates(self) -> list[date]:
        return [self.start + timedelta(days=i) for i in range(self.days)]


def _week_start(d: date) -> date:
    # Monday = 0
    return d - timedelta(days=d.weekday())


def preset_to_date_range(preset: str, today: date | None = None) -> DateRange | None:
    """
    Resolve a period preset to an inclusive date range.

    Returns None for "all_time" (no date filter) and "custom" (caller supplies dates).
    Ranges that include the current period stop at `today`, never in the future.
    """
    today = today or date.today()

    if preset == "today":
        return DateRange(today, today)
    if preset == "yesterday":
        y = today - timedelta(days=1)
        return DateRange(y, y)
    if preset == "this_week":
        return DateRange(_week_start(today), today)
    if preset == "last_week":
        last_week_end = _week_start(today) - timedelta(days=1)
        return DateRange(_week_start(last_week_end), last_week_end)
    if preset == "this_month":
        return DateRange(today.replace(day=1), today)
    if preset == "last_month":
        last_month_end = today.replace(day=1) - timedelta(days=1)
        return DateRange(last_month_end.replace(day=1), last_month_end)
    if preset == "last_7_days":
        return DateRange(today - timedelta(days=6), today)
    if preset == "last_30_days":
        return DateRange(today - timedelta(days=29), today)
    if preset == "last_90_days":
        return DateRange(today - timedelta(days=89), today)
    if preset == "this_year":
        return DateRange(date(today.year, 1, 1), today)
    return None


def month_range(today: date) -> DateRange:
    """The whole calendar month containing `today`, including days still ahead."""
    last = calendar.monthrange(today.year, today.month)[1]
    return DateRange(today.replace(day=1), today.replace(day=last))


def previous_period(preset: str) -> str | None:
    return {
        "today": "yesterday",
        "this_week": "last_week",
        "this_month": "last_month",
    }.get(preset)


def clamp_to_counting_start(rng: DateRange | None, counting_start: date | None) -> DateRange | None:
    """Trim a range so nothing before the league's counting start is scored.

    A range that ends before the counting start yields None (no valid period).
    """
    if rng is None or counting_start is None:
        return rng
    if rng.end < counting_start:
        return None
    if rng.start < counting_start:
        return DateRange(counting_start, rng.end)
    return rng


def calculate_streak(submission_dates: Iterable[date], today: date | None = None) -> int:
    """
    Count consecutive submitted days ending today or yesterday.

    A streak whose most recent day is older than yesterday is broken (0).
    Duplicate dates are ignored.
    """
    today = today or date.today()
    ordered = sorted(set(submission_dates), reverse=True)
    if not ordered:
        return 0

    yesterday = today - timedelta(days=1)
    if ordered[0] not in (today, yesterday):
        return 0

    streak = 0
    expected = ordered[0]
    for d in ordered:
        if d == expected:
            streak += 1
            expected = expected - timedelta(days=1)
        elif d < expected:
            break
    return streak


def longest_streak(submission_dates: Iterable[date]) -> int:
    ordered = sorted(set(submission_dates))
    best = run = 0
    prev: date | None = None
    for d in ordered:
        run = run + 1 if prev is not None and d - prev == timedelta(days=1) else 1
        best = max(best, run)
        prev = d
    return best
