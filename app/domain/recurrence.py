"""
Deterministic recurrence projection for income events and recurring payments.

Uses date only (no timezone). next_occurrence() is the single source of
truth: lazy spawning on mark-received / mark-paid and eager projection
both go through it.

Frequencies:
- once: no next occurrence
- weekly: +7 days
- biweekly: +14 days
- monthly: +1 calendar month
- quarterly: +3 calendar months
- annual: +1 calendar year
Month/year steps clamp to the last valid day (Jan 31 -> Feb 28/29).
"""
import calendar
from datetime import date, timedelta


FREQ_ONCE = "once"
FREQ_WEEKLY = "weekly"
FREQ_BIWEEKLY = "biweekly"
FREQ_MONTHLY = "monthly"
FREQ_QUARTERLY = "quarterly"
FREQ_ANNUAL = "annual"

INCOME_FREQUENCIES = (FREQ_ONCE, FREQ_WEEKLY, FREQ_BIWEEKLY, FREQ_MONTHLY, FREQ_QUARTERLY, FREQ_ANNUAL)
RECURRING_FREQUENCIES = frozenset(INCOME_FREQUENCIES) - {FREQ_ONCE}

_DAY_STEPS = {FREQ_WEEKLY: 7, FREQ_BIWEEKLY: 14}
_MONTH_STEPS = {FREQ_MONTHLY: 1, FREQ_QUARTERLY: 3, FREQ_ANNUAL: 12}


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, n: int) -> date:
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    last = last_day_of_month(year, month)
    day = min(d.day, last)
    return date(year, month, day)


def next_occurrence(d: date, frequency: str) -> date | None:
    """Date of the occurrence after d, or None for one-off frequencies.

    Raises:
        ValueError: unknown frequency
    """
    if frequency == FREQ_ONCE:
        return None
    if frequency in _DAY_STEPS:
        return d + timedelta(days=_DAY_STEPS[frequency])
    if frequency in _MONTH_STEPS:
        return add_months(d, _MONTH_STEPS[frequency])
    raise ValueError(f"invalid frequency: {frequency}")


def project_occurrences(start: date, frequency: str, until: date, limit: int = 366) -> list[date]:
    """Occurrence dates from start (inclusive) up to until (inclusive).

    Each step is taken from the previous occurrence, exactly like the lazy
    spawn chain, so eager and lazy projection never disagree.
    """
    if until < start:
        return []
    out = [start]
    d = start
    while len(out) < limit:
        d = next_occurrence(d, frequency)
        if d is None or d > until:
            break
        out.append(d)
    return out
