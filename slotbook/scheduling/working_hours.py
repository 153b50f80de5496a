"""Working-hours configuration as stored on a provider and read by calendar math."""

import logging
from datetime import date, time
from typing import Any

import pytz
from pydantic import BaseModel, ValidationError, field_validator

from slotbook.core import config

logger = logging.getLogger(__name__)

# Index matches ``date.weekday()``.
WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')


class BreakInterval(BaseModel):
    start: time
    end: time
    label: str = ''


class DayHours(BaseModel):
    enabled: bool = False
    start: time = time(9, 0)
    end: time = time(17, 0)
    breaks: list[BreakInterval] = []

    @property
    def has_valid_range(self) -> bool:
        return self.start < self.end


DEFAULT_DAY_HOURS = {
    weekday: DayHours(enabled=weekday != 'sunday', start=time(9, 0), end=time(17, 0))
    for weekday in WEEKDAYS
}


def normalize_weekdays(days: dict[str, DayHours]) -> dict[str, DayHours]:
    normalized = {}
    for weekday, hours in days.items():
        key = weekday.strip().lower()
        if key not in WEEKDAYS:
            raise ValueError(f'Unknown weekday: {weekday}')
        normalized[key] = hours
    return normalized


def require_valid_ranges(days: dict[str, DayHours]) -> dict[str, DayHours]:
    """Reject inverted day or break ranges on write. Stored data is read leniently instead."""
    for weekday, hours in days.items():
        if hours.enabled and not hours.has_valid_range:
            raise ValueError(f'Working hours for {weekday} must start before they end.')
        for break_interval in hours.breaks:
            if break_interval.start >= break_interval.end:
                raise ValueError(f'Breaks on {weekday} must start before they end.')
    return days


def normalize_timezone(value: str) -> str:
    normalized = value.strip()
    if normalized not in pytz.all_timezones_set:
        raise ValueError(f'Unknown timezone: {value}')
    return normalized


class WorkingHoursConfig(BaseModel):
    timezone: str = config.DEFAULT_TIMEZONE
    days: dict[str, DayHours] = {}

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        return normalize_timezone(value)

    @field_validator('days')
    @classmethod
    def validate_weekdays(cls, value: dict[str, DayHours]) -> dict[str, DayHours]:
        return normalize_weekdays(value)

    @property
    def tzinfo(self) -> pytz.tzinfo.BaseTzInfo:
        return pytz.timezone(self.timezone)

    def for_date(self, day: date) -> DayHours | None:
        return self.days.get(WEEKDAYS[day.weekday()])

    def to_stored(self) -> dict[str, Any]:
        """Serialize every weekday so an all-closed week is not mistaken for an unset one."""
        return {weekday: self.days.get(weekday, DayHours()).model_dump(mode='json') for weekday in WEEKDAYS}

    @classmethod
    def default(cls, timezone: str | None = None) -> 'WorkingHoursConfig':
        return cls(timezone=timezone or config.DEFAULT_TIMEZONE, days=dict(DEFAULT_DAY_HOURS))

    @classmethod
    def from_stored(cls, raw: Any, timezone: str | None = None, owner: str = 'provider') -> 'WorkingHoursConfig':
        """Parse stored JSON leniently.

        A malformed weekday entry closes that day only, so one bad entry cannot
        blind the rest of the week. An unknown timezone falls back to UTC.
        """
        tz_name = timezone or config.DEFAULT_TIMEZONE
        try:
            tz_name = normalize_timezone(tz_name)
        except ValueError:
            logger.warning('Invalid timezone %r for %s, using UTC', tz_name, owner)
            tz_name = 'UTC'

        if not raw:
            return cls.default(tz_name)

        if not isinstance(raw, dict):
            logger.warning('Working hours for %s are not a mapping; treating every day as closed', owner)
            return cls(timezone=tz_name, days={})

        days: dict[str, DayHours] = {}
        for weekday, entry in raw.items():
            key = str(weekday).strip().lower()
            if key not in WEEKDAYS:
                logger.warning('Ignoring unknown weekday %r in working hours for %s', weekday, owner)
                continue
            try:
                days[key] = DayHours.model_validate(entry)
            except ValidationError:
                logger.warning('Malformed working hours for %s on %s; day treated as closed', owner, key)

        return cls(timezone=tz_name, days=days)
