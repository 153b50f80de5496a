"""
Booking arbitrator.

Competing bookings for one provider are serialized on a per-provider lock
(plus a provider row lock in the same transaction for multi-process
deployments). Availability is re-checked inside that section, and the pending
hold is committed before the section is released, so exactly one of several
overlapping attempts can win and the losers only look after the winner's row
is durable.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from slotbook.core import config
from slotbook.scheduling.availability import AvailabilityResolver, validate_duration, validate_interval
from slotbook.scheduling.blocks import TravelBufferPolicy
from slotbook.scheduling.errors import InvalidRequestError, LockTimeoutError, StorageUnavailableError
from slotbook.scheduling.intervals import Interval
from slotbook.scheduling.lifecycle import ReservationLifecycle
from slotbook.scheduling.locks import KeyedLocks
from slotbook.scheduling.store import store_transaction

logger = logging.getLogger(__name__)

SLOT_NO_LONGER_AVAILABLE = 'time slot is no longer available'
TRY_AGAIN = 'the calendar is busy right now, please try again'


@dataclass(frozen=True)
class BookingResult:
    success: bool
    appointment_id: int | None = None
    conflict_reason: str | None = None
    conflicting_appointment_id: int | None = None
    retryable: bool = False
    status: str | None = None
    expires_at: datetime | None = None


class BookingArbitrator:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        resolver: AvailabilityResolver,
        lifecycle: ReservationLifecycle,
        lock_timeout: float = config.BOOKING_LOCK_TIMEOUT_SECONDS,
    ) -> None:
        self._session_factory = session_factory
        self.resolver = resolver
        self.lifecycle = lifecycle
        self.lock_timeout = lock_timeout
        self._locks = KeyedLocks()

    def book(
        self,
        provider_id: int,
        client_id: int,
        start: datetime,
        duration_minutes: int,
        buffer: TravelBufferPolicy | None = None,
        notes: str | None = None,
    ) -> BookingResult:
        validate_duration(duration_minutes)
        requested = Interval(start, start + timedelta(minutes=duration_minutes))
        return self.attempt_book(provider_id, client_id, requested, buffer, notes=notes)

    def attempt_book(
        self,
        provider_id: int,
        client_id: int,
        requested: Interval,
        buffer: TravelBufferPolicy | None = None,
        notes: str | None = None,
    ) -> BookingResult:
        validate_interval(requested)
        seconds = (requested.end - requested.start).total_seconds()
        if seconds % 60:
            raise InvalidRequestError('Bookings must last a whole number of minutes.')
        validate_duration(int(seconds // 60))

        try:
            with self._locks.hold(provider_id, self.lock_timeout):
                return self._claim(provider_id, client_id, requested, int(seconds // 60), buffer, notes)
        except LockTimeoutError:
            logger.warning('Booking lock for provider %s timed out after %ss', provider_id, self.lock_timeout)
            return BookingResult(False, conflict_reason=TRY_AGAIN, retryable=True)
        except StorageUnavailableError:
            return BookingResult(False, conflict_reason=TRY_AGAIN, retryable=True)

    def _claim(
        self,
        provider_id: int,
        client_id: int,
        requested: Interval,
        duration_minutes: int,
        buffer: TravelBufferPolicy | None,
        notes: str | None,
    ) -> BookingResult:
        with store_transaction(self._session_factory) as store:
            provider = store.lock_provider(provider_id)
            events = self.lifecycle.expire_due(store, provider_id)

            availability = self.resolver.check(store, provider_id, requested)
            if not availability.available:
                result = BookingResult(
                    False,
                    conflict_reason=SLOT_NO_LONGER_AVAILABLE,
                    conflicting_appointment_id=availability.conflicting_appointment_id,
                )
            else:
                effective_buffer = buffer or TravelBufferPolicy.default().with_fallback(
                    provider.pre_travel_minutes, provider.post_travel_minutes
                )
                appointment = self.lifecycle.new_pending(
                    provider_id, client_id, requested.start, duration_minutes, effective_buffer, notes
                )
                result = BookingResult(
                    True,
                    appointment_id=store.insert_pending(appointment),
                    status=appointment.status,
                    expires_at=appointment.expires_at,
                )

        self.lifecycle.notifier.publish_all(events)
        if result.success:
            logger.info(
                'Provider %s: pending hold %s created for client %s at %s',
                provider_id,
                result.appointment_id,
                client_id,
                requested.start.isoformat(),
            )
        return result
