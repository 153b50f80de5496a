"""
Calendar math: turn a working-hours configuration and a date into the day's
open intervals, expressed as naive UTC instants.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import List

import pytz

from slotbook.scheduling.intervals import Interval, subtract_all
from slotbook.scheduling.working_hours import WEEKDAYS, WorkingHoursConfig

logger = logging.getLogger(__name__)


def local_to_utc(day: date, time_of_day: time, tz: pytz.tzinfo.BaseTzInfo) -> datetime:
    local = tz.localize(datetime.combine(day, time_of_day))
    return local.astimezone(pytz.UTC).replace(tzinfo=None)


def utc_to_local(instant: datetime, tz: pytz.tzinfo.BaseTzInfo) -> datetime:
    return pytz.UTC.localize(instant).astimezone(tz).replace(tzinfo=None)


def local_dates(config: WorkingHoursConfig, interval: Interval) -> List[date]:
    """Local calendar dates touched by ``interval``."""
    tz = config.tzinfo
    first = utc_to_local(interval.start, tz).date()
    # The end is exclusive, so an interval ending exactly at midnight stays on the earlier day.
    last = utc_to_local(interval.end - timedelta(microseconds=1), tz).date()

    days = []
    current = first
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return days


def open_intervals(config: WorkingHoursConfig, day: date) -> List[Interval]:
    """
    Open intervals for ``day``: the working window minus the union of breaks.

    A missing or disabled day yields nothing. So does an inverted range
    (start >= end), which is logged rather than raised.
    """
    hours = config.for_date(day)
    if hours is None or not hours.enabled:
        return []

    weekday = WEEKDAYS[day.weekday()]
    if not hours.has_valid_range:
        logger.warning(
            'Working hours for %s start at %s but end at %s; treating %s as closed',
            weekday,
            hours.start,
            hours.end,
            day.isoformat(),
        )
        return []

    tz = config.tzinfo
    window = Interval(local_to_utc(day, hours.start, tz), local_to_utc(day, hours.end, tz))

    breaks = []
    for break_interval in hours.breaks:
        if break_interval.start >= break_interval.end:
            logger.warning('Ignoring inverted break %r on %s', break_interval.label, weekday)
            continue
        breaks.append(
            Interval(local_to_utc(day, break_interval.start, tz), local_to_utc(day, break_interval.end, tz))
        )

    return subtract_all([window], breaks)


def open_intervals_between(config: WorkingHoursConfig, interval: Interval) -> List[Interval]:
    """Open intervals of every local day ``interval`` touches."""
    result: List[Interval] = []
    for day in local_dates(config, interval):
        result.extend(open_intervals(config, day))
    return result
