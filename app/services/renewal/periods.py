from __future__ import annotations

from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from app.models.budget import PeriodType
from app.utils.timeutils import ensure_utc

PERIOD_LENGTHS: dict[PeriodType, relativedelta] = {
    PeriodType.WEEKLY: relativedelta(days=7),
    PeriodType.MONTHLY: relativedelta(months=1),
    PeriodType.QUARTERLY: relativedelta(months=3),
    PeriodType.SEMIANNUAL: relativedelta(months=6),
    PeriodType.ANNUAL: relativedelta(years=1),
}

RENEWABLE_PERIODS = frozenset(PERIOD_LENGTHS)


def is_renewable_period(period_type: PeriodType | str | None) -> bool:
    try:
        return PeriodType(period_type) in RENEWABLE_PERIODS
    except ValueError:
        return False


def next_period(period_type: PeriodType | str, period_end: datetime) -> tuple[datetime, datetime]:
    """
    Dates of the period following one that ends at period_end.

    The new period starts one day after the old end. Its length follows the
    calendar, so a monthly period starting Jan 31 ends on the last day of
    February rather than a fixed number of days later.
    """
    length = PERIOD_LENGTHS.get(PeriodType(period_type))
    if length is None:
        raise ValueError(f"Period type '{PeriodType(period_type).value}' cannot be renewed")
    start = ensure_utc(period_end) + timedelta(days=1)
    return start, start + length
