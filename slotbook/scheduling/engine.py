"""Wires the scheduling components around one session factory and clock."""

from functools import lru_cache
from typing import Callable

from sqlalchemy.orm import Session

from slotbook.core import config
from slotbook.core.clock import Clock, utc_now
from slotbook.database import SessionLocal
from slotbook.scheduling.arbitrator import BookingArbitrator
from slotbook.scheduling.availability import AvailabilityResolver
from slotbook.scheduling.blocks import TravelBufferPolicy
from slotbook.scheduling.lifecycle import ReservationLifecycle
from slotbook.scheduling.notifications import NotificationBus


class SchedulingEngine:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock = utc_now,
        notifier: NotificationBus | None = None,
        expiry_minutes: int = config.PENDING_EXPIRY_MINUTES,
        lock_timeout: float = config.BOOKING_LOCK_TIMEOUT_SECONDS,
        default_buffer: TravelBufferPolicy | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock
        self.notifier = notifier or NotificationBus()
        self.lifecycle = ReservationLifecycle(
            session_factory,
            clock=clock,
            expiry_minutes=expiry_minutes,
            notifier=self.notifier,
            lock_timeout=lock_timeout,
        )
        self.resolver = AvailabilityResolver(
            session_factory,
            lifecycle=self.lifecycle,
            clock=clock,
            default_buffer=default_buffer,
        )
        self.arbitrator = BookingArbitrator(
            session_factory,
            self.resolver,
            self.lifecycle,
            lock_timeout=lock_timeout,
        )


@lru_cache(maxsize=1)
def get_scheduling_engine() -> SchedulingEngine:
    return SchedulingEngine(SessionLocal)
