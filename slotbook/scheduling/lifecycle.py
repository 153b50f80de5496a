"""
Reservation lifecycle: pending -> confirmed | cancelled | expired.

Every transition is a conditional update on the single ``status`` column, so
two actors racing on the same appointment cannot both win. Confirm and cancel
additionally serialize on a per-appointment lock, and a cancel that has been
announced makes any confirm that runs before it stand down.
"""

import logging
from collections import Counter
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, List

from sqlalchemy.orm import Session

from slotbook.core import config
from slotbook.core.clock import Clock, utc_now
from slotbook.models.appointment import Appointment, AppointmentStatus
from slotbook.scheduling.blocks import TravelBufferPolicy
from slotbook.scheduling.errors import AppointmentNotFoundError, InvalidRequestError
from slotbook.scheduling.locks import KeyedLocks
from slotbook.scheduling.notifications import NotificationBus, StatusChangeEvent
from slotbook.scheduling.store import AppointmentStore, store_transaction

logger = logging.getLogger(__name__)

CONFIRM_REPLIES = {'yes', 'y', 'confirm', 'confirmed'}
CANCEL_REPLIES = {'no', 'n', 'cancel', 'cancelled'}

STATUS_MESSAGES = {
    AppointmentStatus.PENDING: 'This appointment is awaiting confirmation.',
    AppointmentStatus.CONFIRMED: 'This appointment has already been confirmed.',
    AppointmentStatus.CANCELLED: 'This appointment has been cancelled.',
    AppointmentStatus.EXPIRED: 'This appointment request has expired.',
}


@dataclass(frozen=True)
class TransitionResult:
    appointment_id: int
    status: AppointmentStatus
    changed: bool
    message: str
    reply_count: int | None = None

    @property
    def already_processed(self) -> bool:
        return not self.changed


def parse_reply(body: str) -> str:
    normalized = (body or '').strip().strip('.!').lower()
    if normalized in CONFIRM_REPLIES:
        return 'confirm'
    if normalized in CANCEL_REPLIES:
        return 'cancel'
    raise InvalidRequestError("Reply with 'YES' to confirm or 'NO' to cancel.")


class ReservationLifecycle:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock = utc_now,
        expiry_minutes: int = config.PENDING_EXPIRY_MINUTES,
        notifier: NotificationBus | None = None,
        lock_timeout: float = config.BOOKING_LOCK_TIMEOUT_SECONDS,
    ) -> None:
        if expiry_minutes <= 0:
            raise ValueError('expiry_minutes must be positive.')
        self._session_factory = session_factory
        self.clock = clock
        self.expiry_window = timedelta(minutes=expiry_minutes)
        self.notifier = notifier or NotificationBus()
        self.lock_timeout = lock_timeout
        self._locks = KeyedLocks()
        self._cancel_guard = Lock()
        self._cancel_requests: Counter[int] = Counter()

    def new_pending(
        self,
        provider_id: int,
        client_id: int,
        scheduled_at: datetime,
        duration_minutes: int,
        buffer: TravelBufferPolicy,
        notes: str | None = None,
    ) -> Appointment:
        now = self.clock()
        return Appointment(
            provider_id=provider_id,
            client_id=client_id,
            scheduled_at=scheduled_at,
            duration_minutes=duration_minutes,
            status=AppointmentStatus.PENDING.value,
            created_at=now,
            expires_at=now + self.expiry_window,
            updated_at=now,
            pre_travel_minutes=buffer.pre_travel_minutes,
            post_travel_minutes=buffer.post_travel_minutes,
            reply_count=0,
            notes=notes,
        )

    def is_expired(self, appointment: Appointment, now: datetime | None = None) -> bool:
        """A pending hold is expired strictly after ``expires_at``."""
        if appointment.status != AppointmentStatus.PENDING or appointment.expires_at is None:
            return False
        return (now or self.clock()) > appointment.expires_at

    def expire_due(self, store: AppointmentStore, provider_id: int | None = None) -> List[StatusChangeEvent]:
        """Expire overdue holds inside the caller's transaction.

        Returns the events to publish once that transaction commits.
        """
        now = self.clock()
        events = []
        for appointment in store.find_due_for_expiry(now, provider_id):
            if store.update_status(appointment.id, AppointmentStatus.PENDING, AppointmentStatus.EXPIRED, now):
                events.append(
                    StatusChangeEvent(appointment.id, AppointmentStatus.PENDING, AppointmentStatus.EXPIRED, now)
                )
        if events:
            logger.info('Expired %d pending appointment(s)', len(events))
        return events

    def sweep(self, provider_id: int | None = None) -> int:
        with store_transaction(self._session_factory) as store:
            events = self.expire_due(store, provider_id)
        self.notifier.publish_all(events)
        return len(events)

    def get(self, appointment_id: int) -> Appointment:
        with store_transaction(self._session_factory) as store:
            appointment = store.get(appointment_id)
            if appointment is None:
                raise AppointmentNotFoundError(appointment_id)
            store.db.expunge(appointment)
        return appointment

    def confirm(self, appointment_id: int) -> TransitionResult:
        events: List[StatusChangeEvent] = []
        with self._locks.hold(appointment_id, self.lock_timeout):
            with store_transaction(self._session_factory) as store:
                appointment = self._load(store, appointment_id)
                status = AppointmentStatus(appointment.status)
                now = self.clock()

                if status is not AppointmentStatus.PENDING:
                    result = self._unchanged(appointment_id, status)
                elif self.is_expired(appointment, now):
                    result = self._expire_in_place(store, appointment_id, now, events)
                elif self.cancel_requested(appointment_id):
                    result = TransitionResult(
                        appointment_id,
                        AppointmentStatus.CANCELLED,
                        False,
                        STATUS_MESSAGES[AppointmentStatus.CANCELLED],
                    )
                elif store.update_status(appointment_id, status, AppointmentStatus.CONFIRMED, now):
                    result = self._commit_confirm(store, appointment_id, status, now, events)
                else:
                    result = self._unchanged(appointment_id, self._current_status(store, appointment_id))

        self._finish(events)
        return result

    def cancel(self, appointment_id: int, cancelled_by: str = 'provider') -> TransitionResult:
        events: List[StatusChangeEvent] = []
        self._announce_cancel(appointment_id)
        try:
            with self._locks.hold(appointment_id, self.lock_timeout):
                with store_transaction(self._session_factory) as store:
                    appointment = self._load(store, appointment_id)
                    status = AppointmentStatus(appointment.status)
                    now = self.clock()

                    if not status.occupies_calendar:
                        result = self._unchanged(appointment_id, status)
                    elif self.is_expired(appointment, now):
                        result = self._expire_in_place(store, appointment_id, now, events)
                    elif store.update_status(
                        appointment_id, status, AppointmentStatus.CANCELLED, now, cancelled_by=cancelled_by
                    ):
                        events.append(StatusChangeEvent(appointment_id, status, AppointmentStatus.CANCELLED, now))
                        result = TransitionResult(
                            appointment_id, AppointmentStatus.CANCELLED, True, 'The appointment has been cancelled.'
                        )
                    else:
                        result = self._unchanged(appointment_id, self._current_status(store, appointment_id))
        finally:
            self._withdraw_cancel(appointment_id)

        self._finish(events)
        return result

    def process_reply(self, appointment_id: int, body: str) -> TransitionResult:
        """Handle an SMS reply. Every reply is counted; only the first can transition."""
        action = parse_reply(body)

        with store_transaction(self._session_factory) as store:
            reply_count = store.record_reply(appointment_id)
            if not reply_count:
                raise AppointmentNotFoundError(appointment_id)

        if action == 'confirm':
            result = self.confirm(appointment_id)
        else:
            result = self.cancel(appointment_id, cancelled_by='client')
        return replace(result, reply_count=reply_count)

    def cancel_requested(self, appointment_id: int) -> bool:
        with self._cancel_guard:
            return self._cancel_requests[appointment_id] > 0

    def _announce_cancel(self, appointment_id: int) -> None:
        with self._cancel_guard:
            self._cancel_requests[appointment_id] += 1

    def _withdraw_cancel(self, appointment_id: int) -> None:
        with self._cancel_guard:
            self._cancel_requests[appointment_id] -= 1
            if self._cancel_requests[appointment_id] <= 0:
                del self._cancel_requests[appointment_id]

    def _commit_confirm(
        self,
        store: AppointmentStore,
        appointment_id: int,
        previous: AppointmentStatus,
        now: datetime,
        events: List[StatusChangeEvent],
    ) -> TransitionResult:
        # Holding the guard across the re-check and the commit means a cancel is
        # announced either before (and wins) or after the confirmation is durable.
        with self._cancel_guard:
            if self._cancel_requests[appointment_id] > 0:
                store.db.rollback()
                return TransitionResult(
                    appointment_id,
                    AppointmentStatus.CANCELLED,
                    False,
                    STATUS_MESSAGES[AppointmentStatus.CANCELLED],
                )
            store.db.commit()

        events.append(StatusChangeEvent(appointment_id, previous, AppointmentStatus.CONFIRMED, now))
        return TransitionResult(appointment_id, AppointmentStatus.CONFIRMED, True, 'Your appointment is confirmed.')

    def _load(self, store: AppointmentStore, appointment_id: int) -> Appointment:
        appointment = store.get(appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(appointment_id)
        return appointment

    def _current_status(self, store: AppointmentStore, appointment_id: int) -> AppointmentStatus:
        return AppointmentStatus(self._load(store, appointment_id).status)

    def _expire_in_place(
        self,
        store: AppointmentStore,
        appointment_id: int,
        now: datetime,
        events: List[StatusChangeEvent],
    ) -> TransitionResult:
        if store.update_status(appointment_id, AppointmentStatus.PENDING, AppointmentStatus.EXPIRED, now):
            events.append(
                StatusChangeEvent(appointment_id, AppointmentStatus.PENDING, AppointmentStatus.EXPIRED, now)
            )
            return self._unchanged(appointment_id, AppointmentStatus.EXPIRED)
        return self._unchanged(appointment_id, self._current_status(store, appointment_id))

    def _unchanged(self, appointment_id: int, status: AppointmentStatus) -> TransitionResult:
        return TransitionResult(appointment_id, status, False, STATUS_MESSAGES[status])

    def _finish(self, events: List[StatusChangeEvent]) -> None:
        for event in events:
            logger.info(
                'Appointment %s moved from %s to %s',
                event.appointment_id,
                event.old_status.value,
                event.new_status.value,
            )
        self.notifier.publish_all(events)
