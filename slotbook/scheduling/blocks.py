"""Exclusion intervals: the span an appointment plus its travel buffer removes from availability."""

from dataclasses import dataclass
from datetime import timedelta

from slotbook.core import config
from slotbook.models.appointment import Appointment
from slotbook.scheduling.intervals import Interval


@dataclass(frozen=True)
class TravelBufferPolicy:
    pre_travel_minutes: int = 0
    post_travel_minutes: int = 0

    def __post_init__(self) -> None:
        if self.pre_travel_minutes < 0 or self.post_travel_minutes < 0:
            raise ValueError('Travel buffers cannot be negative.')
        if max(self.pre_travel_minutes, self.post_travel_minutes) > config.MAX_TRAVEL_MINUTES:
            raise ValueError(f'Travel buffers cannot exceed {config.MAX_TRAVEL_MINUTES} minutes.')

    @classmethod
    def default(cls) -> 'TravelBufferPolicy':
        return cls(config.DEFAULT_PRE_TRAVEL_MINUTES, config.DEFAULT_POST_TRAVEL_MINUTES)

    def with_fallback(self, pre: int | None, post: int | None) -> 'TravelBufferPolicy':
        """Overlay nullable per-record minutes on this policy."""
        return TravelBufferPolicy(
            self.pre_travel_minutes if pre is None else pre,
            self.post_travel_minutes if post is None else post,
        )


def buffer_for(appointment: Appointment, default: TravelBufferPolicy) -> TravelBufferPolicy:
    return default.with_fallback(appointment.pre_travel_minutes, appointment.post_travel_minutes)


def exclusion_interval(appointment: Appointment, buffer: TravelBufferPolicy) -> Interval:
    start = appointment.scheduled_at - timedelta(minutes=buffer.pre_travel_minutes)
    end = appointment.scheduled_at + timedelta(
        minutes=appointment.duration_minutes + buffer.post_travel_minutes
    )
    return Interval(start, end)
