import logging
from datetime import date, time

import pytest
from pydantic import ValidationError

from slotbook.scheduling.working_hours import WEEKDAYS, DayHours, WorkingHoursConfig


def test_default_hours_open_monday_to_saturday() -> None:
    config = WorkingHoursConfig.default('UTC')

    assert [weekday for weekday in WEEKDAYS if config.days[weekday].enabled] == list(WEEKDAYS[:6])
    assert config.days['monday'].start == time(9, 0)
    assert config.days['monday'].end == time(17, 0)


def test_empty_stored_hours_fall_back_to_defaults() -> None:
    assert WorkingHoursConfig.from_stored(None, timezone='UTC') == WorkingHoursConfig.default('UTC')
    assert WorkingHoursConfig.from_stored({}, timezone='UTC') == WorkingHoursConfig.default('UTC')


def test_malformed_day_only_closes_that_day(caplog: pytest.LogCaptureFixture) -> None:
    raw = {
        'Monday': {'enabled': True, 'start': 'nine', 'end': '17:00'},
        'tuesday': {'enabled': True, 'start': '10:00', 'end': '16:00'},
    }

    with caplog.at_level(logging.WARNING, logger='slotbook.scheduling.working_hours'):
        config = WorkingHoursConfig.from_stored(raw, timezone='UTC', owner='provider 7')

    assert config.for_date(date(2025, 6, 30)) is None
    assert config.for_date(date(2025, 7, 1)) == DayHours(enabled=True, start=time(10, 0), end=time(16, 0))
    assert 'provider 7' in caplog.text


def test_unknown_weekday_keys_are_ignored_when_stored() -> None:
    config = WorkingHoursConfig.from_stored({'funday': {'enabled': True}}, timezone='UTC')

    assert config.days == {}


def test_unknown_stored_timezone_falls_back_to_utc() -> None:
    config = WorkingHoursConfig.from_stored(None, timezone='Mars/Olympus_Mons')

    assert config.timezone == 'UTC'


def test_constructor_rejects_unknown_weekday_and_timezone() -> None:
    with pytest.raises(ValidationError):
        WorkingHoursConfig(timezone='UTC', days={'funday': DayHours()})

    with pytest.raises(ValidationError):
        WorkingHoursConfig(timezone='Mars/Olympus_Mons', days={})


def test_to_stored_writes_every_weekday() -> None:
    stored = WorkingHoursConfig(timezone='UTC', days={}).to_stored()

    assert list(stored) == list(WEEKDAYS)
    assert not any(day['enabled'] for day in stored.values())
    assert WorkingHoursConfig.from_stored(stored, timezone='UTC').for_date(date(2025, 7, 1)).enabled is False
