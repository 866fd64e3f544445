"""
Tier Planner - Period Arithmetic.

============================================================
PURPOSE
============================================================
Date arithmetic on partition granularities: aligning dates to
period starts, stepping by one period, subtracting age
thresholds, naming partitions and recognising the granularity
of an existing boundary pair.

Weeks are ISO weeks (Monday start). Quarters start in January,
April, July and October.

============================================================
"""

import calendar
from datetime import date, timedelta
from typing import Optional

from core.types import Granularity


# ============================================================
# ALIGNMENT
# ============================================================

def floor_date(value: date, granularity: Granularity) -> date:
    """Start of the period containing value."""
    if granularity == Granularity.DAY:
        return value
    if granularity == Granularity.WEEK:
        return value - timedelta(days=value.weekday())
    if granularity == Granularity.MONTH:
        return value.replace(day=1)
    if granularity == Granularity.QUARTER:
        first_month = ((value.month - 1) // 3) * 3 + 1
        return date(value.year, first_month, 1)
    return date(value.year, 1, 1)


def ceil_date(value: date, granularity: Granularity) -> date:
    """Smallest period start that is >= value."""
    floored = floor_date(value, granularity)
    if floored == value:
        return value
    return advance(floored, granularity)


def advance(value: date, granularity: Granularity, periods: int = 1) -> date:
    """
    Step a period start forward by whole periods.

    Month-based steps clamp the day to the end of the target month.
    """
    if granularity == Granularity.DAY:
        return value + timedelta(days=periods)
    if granularity == Granularity.WEEK:
        return value + timedelta(weeks=periods)
    if granularity == Granularity.MONTH:
        return add_months(value, periods)
    if granularity == Granularity.QUARTER:
        return add_months(value, 3 * periods)
    return add_months(value, 12 * periods)


def add_months(value: date, months: int) -> date:
    """Calendar month arithmetic (negative months subtract)."""
    month_index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def subtract_age(
    reference: date,
    age_days: Optional[int] = None,
    age_months: Optional[int] = None,
) -> date:
    """reference minus an age threshold; months are calendar months."""
    if age_months is not None:
        return add_months(reference, -age_months)
    if age_days is not None:
        return reference - timedelta(days=age_days)
    raise ValueError("Either age_days or age_months is required")


# ============================================================
# RECOGNITION
# ============================================================

def infer_granularity(lower: Optional[date], upper: Optional[date]) -> Optional[Granularity]:
    """
    Granularity of an aligned [lower, upper) span, if it is exactly
    one period of some granularity. Clipped or merged spans return
    the closest granularity whose single period covers them.
    """
    if lower is None or upper is None or upper <= lower:
        return None
    for granularity in (
        Granularity.DAY,
        Granularity.WEEK,
        Granularity.MONTH,
        Granularity.QUARTER,
        Granularity.YEAR,
    ):
        start = floor_date(lower, granularity)
        if advance(start, granularity) >= upper:
            return granularity
    return Granularity.YEAR


def period_bounds(value: date, granularity: Granularity) -> tuple:
    """(start, end) of the period containing value."""
    start = floor_date(value, granularity)
    return start, advance(start, granularity)


# ============================================================
# NAMING
# ============================================================

def partition_name(lower: date, granularity: Granularity, prefix: str = "P") -> str:
    """Conventional partition name for a period start."""
    if granularity == Granularity.YEAR:
        suffix = f"{lower.year}"
    elif granularity == Granularity.QUARTER:
        suffix = f"{lower.year}_Q{(lower.month - 1) // 3 + 1}"
    elif granularity == Granularity.MONTH:
        suffix = f"{lower.year}_{lower.month:02d}"
    elif granularity == Granularity.WEEK:
        iso_year, iso_week, _ = lower.isocalendar()
        suffix = f"{iso_year}_W{iso_week:02d}"
    else:
        suffix = lower.strftime("%Y%m%d")
    return f"{prefix}_{suffix}"
