"""
Availability resolver.

A requested interval is available iff it lies entirely inside one of the
provider's open intervals and does not overlap the exclusion interval of any
live appointment. Pending holds past their expiry never count as live, even
before the sweep has caught up with them.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, List

import pytz
from sqlalchemy.orm import Session

from slotbook.core import config
from slotbook.core.clock import Clock, utc_now
from slotbook.models.appointment import Appointment, AppointmentStatus
from slotbook.scheduling.blocks import TravelBufferPolicy, buffer_for, exclusion_interval
from slotbook.scheduling.calendar_math import open_intervals, open_intervals_between, utc_to_local
from slotbook.scheduling.errors import InvalidRequestError
from slotbook.scheduling.intervals import Interval, covering_interval, subtract_all
from slotbook.scheduling.lifecycle import ReservationLifecycle
from slotbook.scheduling.store import AppointmentStore, store_transaction
from slotbook.scheduling.working_hours import WorkingHoursConfig

logger = logging.getLogger(__name__)

OUTSIDE_WORKING_HOURS = 'outside_working_hours'
APPOINTMENT_CONFLICT = 'appointment_conflict'


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    conflicting_appointment_id: int | None = None
    reason: str | None = None


def validate_interval(requested: Interval) -> None:
    if requested.end <= requested.start:
        raise InvalidRequestError('Requested interval must have a positive duration.')


def validate_duration(duration_minutes: int) -> None:
    if duration_minutes <= 0:
        raise InvalidRequestError('Duration must be a positive number of minutes.')
    if duration_minutes > config.MAX_APPOINTMENT_MINUTES:
        raise InvalidRequestError(f'Appointments cannot last longer than {config.MAX_APPOINTMENT_MINUTES} minutes.')


def slot_starts(
    intervals: List[Interval],
    duration_minutes: int,
    granularity_minutes: int,
    tz: pytz.tzinfo.BaseTzInfo = pytz.UTC,
) -> List[datetime]:
    """Start instants whose full duration fits inside one of ``intervals``.

    Starts land on multiples of ``granularity_minutes`` past local midnight in ``tz``.
    """
    validate_duration(duration_minutes)
    if granularity_minutes <= 0:
        raise InvalidRequestError('Slot granularity must be positive.')

    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=granularity_minutes)
    starts: List[datetime] = []

    for interval in intervals:
        current = interval.start.replace(second=0, microsecond=0)
        if current < interval.start:
            current += timedelta(minutes=1)
        local = utc_to_local(current, tz)
        minutes_into_day = local.hour * 60 + local.minute
        if minutes_into_day % granularity_minutes:
            current += timedelta(minutes=granularity_minutes - minutes_into_day % granularity_minutes)

        while current + duration <= interval.end:
            starts.append(current)
            current += step

    return starts


class AvailabilityResolver:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        lifecycle: ReservationLifecycle | None = None,
        clock: Clock = utc_now,
        default_buffer: TravelBufferPolicy | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.lifecycle = lifecycle
        self.clock = clock
        self.default_buffer = default_buffer or TravelBufferPolicy.default()

    def occupies(self, appointment: Appointment, now: datetime) -> bool:
        status = AppointmentStatus(appointment.status)
        if not status.occupies_calendar:
            return False
        if status is AppointmentStatus.PENDING and appointment.expires_at is not None:
            return now <= appointment.expires_at
        return True

    def exclusions(self, store: AppointmentStore, provider_id: int, window: Interval) -> List[tuple[Interval, Appointment]]:
        now = self.clock()
        blocks = []
        for appointment in store.load_appointments(provider_id, window):
            if not self.occupies(appointment, now):
                continue
            blocks.append((exclusion_interval(appointment, buffer_for(appointment, self.default_buffer)), appointment))
        return blocks

    def check(self, store: AppointmentStore, provider_id: int, requested: Interval) -> AvailabilityResult:
        """Decide availability against ``store`` without committing anything."""
        validate_interval(requested)

        working_hours = store.load_working_hours(provider_id)
        if covering_interval(open_intervals_between(working_hours, requested), requested) is None:
            return AvailabilityResult(False, reason=OUTSIDE_WORKING_HOURS)

        conflicts = [
            appointment
            for block, appointment in self.exclusions(store, provider_id, requested)
            if block.overlaps(requested)
        ]
        if conflicts:
            first = min(conflicts, key=lambda appointment: (appointment.scheduled_at, appointment.id))
            return AvailabilityResult(False, conflicting_appointment_id=first.id, reason=APPOINTMENT_CONFLICT)

        return AvailabilityResult(True)

    def is_available(self, provider_id: int, requested: Interval) -> AvailabilityResult:
        validate_interval(requested)
        with store_transaction(self._session_factory) as store:
            events = self._expire(store, provider_id)
            result = self.check(store, provider_id, requested)
        self._publish(events)
        return result

    def free_intervals(self, provider_id: int, day: date, duration_minutes: int) -> List[Interval]:
        """Open sub-intervals of ``day`` at least ``duration_minutes`` long, from now on."""
        free, _ = self._free(provider_id, day, duration_minutes)
        return free

    def slots(
        self, provider_id: int, day: date, duration_minutes: int, granularity_minutes: int
    ) -> List[datetime]:
        """Bookable start instants on ``day``, aligned in the provider's own timezone."""
        if granularity_minutes <= 0:
            raise InvalidRequestError('Slot granularity must be positive.')
        free, working_hours = self._free(provider_id, day, duration_minutes)
        return slot_starts(free, duration_minutes, granularity_minutes, working_hours.tzinfo)

    def _free(self, provider_id: int, day: date, duration_minutes: int) -> tuple[List[Interval], WorkingHoursConfig]:
        validate_duration(duration_minutes)
        minimum = timedelta(minutes=duration_minutes)

        with store_transaction(self._session_factory) as store:
            events = self._expire(store, provider_id)
            working_hours = store.load_working_hours(provider_id)
            day_open = open_intervals(working_hours, day)
            if day_open:
                window = Interval(day_open[0].start, day_open[-1].end)
                blocks = [block for block, _ in self.exclusions(store, provider_id, window)]
                free = subtract_all(day_open, blocks)
            else:
                free = []
        self._publish(events)

        now = self.clock()
        clipped = [interval.clip(now) for interval in free if interval.end > now]
        return [interval for interval in clipped if interval.duration >= minimum], working_hours

    def _expire(self, store: AppointmentStore, provider_id: int) -> list:
        if self.lifecycle is None:
            return []
        return self.lifecycle.expire_due(store, provider_id)

    def _publish(self, events: list) -> None:
        if self.lifecycle is not None and events:
            self.lifecycle.notifier.publish_all(events)
