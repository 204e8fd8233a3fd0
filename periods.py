import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Union

from models import BudgetPeriod

logger = logging.getLogger(__name__)

_DAY_END = time(23, 59, 59)


@dataclass(frozen=True)
class Period:
    slug: str
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


def _month_end(first: date) -> date:
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def period_bounds(period: Union[BudgetPeriod, str], now: datetime) -> Period:
    """Return the weekly, monthly or yearly window containing ``now``.

    Weeks run Monday 00:00:00 through Sunday 23:59:59. Unknown period kinds
    are treated as monthly and logged, since they indicate bad stored data.
    """
    try:
        kind = BudgetPeriod(period)
    except ValueError:
        logger.warning(f"period_bounds: unknown period={period!r}, using monthly")
        kind = BudgetPeriod.monthly

    today = now.date()
    if kind == BudgetPeriod.weekly:
        monday = today - timedelta(days=today.weekday())
        sunday = monday + timedelta(days=6)
        return Period(
            "weekly",
            datetime.combine(monday, time.min),
            datetime.combine(sunday, _DAY_END),
        )
    if kind == BudgetPeriod.yearly:
        return Period(
            "yearly",
            datetime(today.year, 1, 1),
            datetime.combine(date(today.year, 12, 31), _DAY_END),
        )

    first = today.replace(day=1)
    return Period(
        "monthly",
        datetime.combine(first, time.min),
        datetime.combine(_month_end(first), _DAY_END),
    )


def _shift_months(first: date, months: int) -> date:
    total = first.year * 12 + first.month - 1 + months
    return date(total // 12, total % 12 + 1, 1)


def preset_periods(now: datetime) -> list[Period]:
    """Report ranges offered next to a custom range.

    "last_3_months" and "this_year" run through the end of the current month.
    """
    this_month = period_bounds(BudgetPeriod.monthly, now)
    first = this_month.start.date()
    last_month_start = _shift_months(first, -1)
    return [
        Period("this_month", this_month.start, this_month.end),
        Period(
            "last_month",
            datetime.combine(last_month_start, time.min),
            datetime.combine(_month_end(last_month_start), _DAY_END),
        ),
        Period(
            "last_3_months",
            datetime.combine(_shift_months(first, -2), time.min),
            this_month.end,
        ),
        Period("this_year", datetime(first.year, 1, 1), this_month.end),
    ]
