"""
Report period bucketing.

A date range [start, end] (inclusive) is cut into consecutive periods of
the requested grouping. Calendar groupings (month, quarter, year) follow
calendar boundaries, clipped to the range; weeks are 7-day windows
starting at the range start.
"""
from dataclasses import dataclass
from datetime import date, timedelta

from app.domain.recurrence import add_months, last_day_of_month


GROUP_DAY = "day"
GROUP_WEEK = "week"
GROUP_MONTH = "month"
GROUP_QUARTER = "quarter"
GROUP_YEAR = "year"

GROUPINGS = (GROUP_DAY, GROUP_WEEK, GROUP_MONTH, GROUP_QUARTER, GROUP_YEAR)


@dataclass(frozen=True)
class Period:
    start: date
    end: date  # inclusive
    label: str

    def contains(self, d: date | None) -> bool:
        return d is not None and self.start <= d <= self.end


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last day of a calendar month."""
    return date(year, month, 1), date(year, month, last_day_of_month(year, month))


def _calendar_end(d: date, group_by: str) -> date:
    if group_by == GROUP_DAY:
        return d
    if group_by == GROUP_WEEK:
        return d + timedelta(days=6)
    if group_by == GROUP_MONTH:
        return month_bounds(d.year, d.month)[1]
    if group_by == GROUP_QUARTER:
        last_month = ((d.month - 1) // 3 + 1) * 3
        return month_bounds(d.year, last_month)[1]
    if group_by == GROUP_YEAR:
        return date(d.year, 12, 31)
    raise ValueError(f"invalid grouping: {group_by}")


def _label(d: date, group_by: str) -> str:
    if group_by == GROUP_DAY:
        return d.isoformat()
    if group_by == GROUP_WEEK:
        return f"Week of {d.isoformat()}"
    if group_by == GROUP_MONTH:
        return f"{d.year:04d}-{d.month:02d}"
    if group_by == GROUP_QUARTER:
        return f"Q{(d.month - 1) // 3 + 1} {d.year}"
    return str(d.year)


def generate_periods(start: date, end: date, group_by: str = GROUP_MONTH) -> list[Period]:
    """Consecutive, gap-free periods covering [start, end].

    Raises:
        ValueError: unknown grouping or start after end
    """
    if group_by not in GROUPINGS:
        raise ValueError(f"invalid grouping: {group_by}")
    if start > end:
        raise ValueError("start must be <= end")

    periods: list[Period] = []
    current = start
    while current <= end:
        period_end = min(_calendar_end(current, group_by), end)
        periods.append(Period(start=current, end=period_end, label=_label(current, group_by)))
        current = period_end + timedelta(days=1)
    return periods


def months_spanned(start: date, end: date) -> int:
    """Calendar months touched by [start, end], at least 1."""
    return max(1, (end.year - start.year) * 12 + (end.month - start.month) + 1)


def month_starts(start: date, end: date) -> list[date]:
    """First day of every calendar month touched by [start, end]."""
    out = []
    d = start.replace(day=1)
    while d <= end:
        out.append(d)
        d = add_months(d, 1)
    return out
