import threading
import time
from datetime import datetime

import pytest

from slotbook.models.appointment import AppointmentStatus
from slotbook.scheduling.errors import AppointmentNotFoundError, InvalidRequestError
from slotbook.scheduling.lifecycle import parse_reply
from slotbook.scheduling.store import AppointmentStore


def tuesday(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 7, 1, hour, minute)


@pytest.fixture
def pending_id(scheduling_engine, make_provider) -> int:
    provider_id = make_provider()
    result = scheduling_engine.arbitrator.book(provider_id, 42, tuesday(10, 0), 60)
    assert result.success
    return result.appointment_id


def test_new_hold_expires_thirty_minutes_after_creation(scheduling_engine, pending_id, clock) -> None:
    appointment = scheduling_engine.lifecycle.get(pending_id)

    assert appointment.status == AppointmentStatus.PENDING.value
    assert appointment.created_at == clock()
    assert (appointment.expires_at - appointment.created_at).total_seconds() == 30 * 60
    assert appointment.reply_count == 0


@pytest.mark.parametrize(('minutes', 'expired'), [(29, False), (30, False), (31, True)])
def test_expiry_is_strictly_after_the_window(scheduling_engine, pending_id, clock, minutes, expired) -> None:
    appointment = scheduling_engine.lifecycle.get(pending_id)

    clock.advance(minutes=minutes)

    assert scheduling_engine.lifecycle.is_expired(appointment) is expired


def test_confirm_then_confirm_again_is_already_processed(scheduling_engine, pending_id, load_appointment) -> None:
    first = scheduling_engine.lifecycle.confirm(pending_id)
    second = scheduling_engine.lifecycle.confirm(pending_id)

    assert first.changed is True
    assert first.status is AppointmentStatus.CONFIRMED
    assert second.changed is False
    assert second.already_processed is True
    assert second.status is AppointmentStatus.CONFIRMED
    assert second.message == 'This appointment has already been confirmed.'
    assert load_appointment(pending_id).status == AppointmentStatus.CONFIRMED.value


def test_confirm_after_expiry_reports_expired(scheduling_engine, pending_id, clock, load_appointment) -> None:
    clock.advance(minutes=31)

    result = scheduling_engine.lifecycle.confirm(pending_id)

    assert result.changed is False
    assert result.status is AppointmentStatus.EXPIRED
    assert load_appointment(pending_id).status == AppointmentStatus.EXPIRED.value


def test_confirm_after_cancel_reports_cancellation(scheduling_engine, pending_id) -> None:
    scheduling_engine.lifecycle.cancel(pending_id)

    result = scheduling_engine.lifecycle.confirm(pending_id)

    assert result.changed is False
    assert result.status is AppointmentStatus.CANCELLED
    assert result.message == 'This appointment has been cancelled.'


def test_cancel_confirmed_appointment_records_who_cancelled(
    scheduling_engine, pending_id, load_appointment
) -> None:
    scheduling_engine.lifecycle.confirm(pending_id)

    result = scheduling_engine.lifecycle.cancel(pending_id, cancelled_by='client')
    again = scheduling_engine.lifecycle.cancel(pending_id)

    assert result.changed is True
    assert result.status is AppointmentStatus.CANCELLED
    assert again.changed is False
    stored = load_appointment(pending_id)
    assert stored.status == AppointmentStatus.CANCELLED.value
    assert stored.cancelled_by == 'client'


def test_unknown_appointment_raises(scheduling_engine) -> None:
    with pytest.raises(AppointmentNotFoundError):
        scheduling_engine.lifecycle.confirm(999)

    with pytest.raises(AppointmentNotFoundError):
        scheduling_engine.lifecycle.cancel(999)


def test_concurrent_cancel_wins_over_confirm(scheduling_engine, pending_id, load_appointment) -> None:
    lifecycle = scheduling_engine.lifecycle
    results = {}

    def run_confirm() -> None:
        results['confirm'] = lifecycle.confirm(pending_id)

    def run_cancel() -> None:
        results['cancel'] = lifecycle.cancel(pending_id)

    confirm_thread = threading.Thread(target=run_confirm)
    cancel_thread = threading.Thread(target=run_cancel)

    # Both callers queue up on the appointment before either gets to act.
    with lifecycle._locks.hold(pending_id, timeout=1):
        confirm_thread.start()
        cancel_thread.start()
        deadline = time.monotonic() + 1
        while not lifecycle.cancel_requested(pending_id) and time.monotonic() < deadline:
            time.sleep(0.005)
        assert lifecycle.cancel_requested(pending_id)

    confirm_thread.join(timeout=5)
    cancel_thread.join(timeout=5)

    assert results['confirm'].status is AppointmentStatus.CANCELLED
    assert results['confirm'].changed is False
    assert results['cancel'].status is AppointmentStatus.CANCELLED
    assert load_appointment(pending_id).status == AppointmentStatus.CANCELLED.value
    assert not lifecycle.cancel_requested(pending_id)


@pytest.mark.parametrize(
    ('body', 'action'),
    [('YES', 'confirm'), (' y ', 'confirm'), ('Confirm!', 'confirm'), ('no', 'cancel'), ('CANCEL', 'cancel')],
)
def test_parse_reply_accepts_common_answers(body: str, action: str) -> None:
    assert parse_reply(body) == action


def test_parse_reply_rejects_anything_else() -> None:
    with pytest.raises(InvalidRequestError):
        parse_reply('maybe later')


def test_every_reply_is_counted(
    scheduling_engine, pending_id, load_appointment
) -> None:
    first = scheduling_engine.lifecycle.process_reply(pending_id, 'YES')
    second = scheduling_engine.lifecycle.process_reply(pending_id, 'NO')

    assert first.changed is True
    assert first.status is AppointmentStatus.CONFIRMED
    assert first.reply_count == 1
    assert second.changed is True
    assert second.status is AppointmentStatus.CANCELLED
    assert second.reply_count == 2
    assert load_appointment(pending_id).cancelled_by == 'client'


def test_duplicate_reply_is_already_processed(scheduling_engine, pending_id) -> None:
    scheduling_engine.lifecycle.process_reply(pending_id, 'yes')
    duplicate = scheduling_engine.lifecycle.process_reply(pending_id, 'yes')

    assert duplicate.already_processed is True
    assert duplicate.reply_count == 2


def test_reply_for_unknown_appointment_raises(scheduling_engine) -> None:
    with pytest.raises(AppointmentNotFoundError):
        scheduling_engine.lifecycle.process_reply(999, 'yes')


def test_status_changes_are_published(scheduling_engine, pending_id) -> None:
    received = []
    unsubscribe = scheduling_engine.notifier.subscribe(received.append)

    scheduling_engine.lifecycle.confirm(pending_id)
    scheduling_engine.lifecycle.confirm(pending_id)
    unsubscribe()
    scheduling_engine.lifecycle.cancel(pending_id)

    assert [(event.old_status, event.new_status) for event in received] == [
        (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED),
    ]
    assert received[0].appointment_id == pending_id


def test_failing_subscriber_does_not_undo_the_transition(scheduling_engine, pending_id, load_appointment) -> None:
    def broken(event) -> None:
        raise RuntimeError('sms gateway down')

    scheduling_engine.notifier.subscribe(broken)

    result = scheduling_engine.lifecycle.confirm(pending_id)

    assert result.changed is True
    assert load_appointment(pending_id).status == AppointmentStatus.CONFIRMED.value


def test_sweep_expires_only_overdue_holds(scheduling_engine, make_provider, clock, load_appointment) -> None:
    provider_id = make_provider()
    old = scheduling_engine.arbitrator.book(provider_id, 1, tuesday(10, 0), 30).appointment_id
    clock.advance(minutes=20)
    fresh = scheduling_engine.arbitrator.book(provider_id, 2, tuesday(11, 0), 30).appointment_id
    clock.advance(minutes=15)

    assert scheduling_engine.lifecycle.sweep() == 1
    assert load_appointment(old).status == AppointmentStatus.EXPIRED.value
    assert load_appointment(fresh).status == AppointmentStatus.PENDING.value
    assert scheduling_engine.lifecycle.sweep() == 0


def test_cancel_arriving_while_confirm_is_writing_still_wins(
    scheduling_engine, pending_id, load_appointment, monkeypatch: pytest.MonkeyPatch
) -> None:
    lifecycle = scheduling_engine.lifecycle
    received = []
    scheduling_engine.notifier.subscribe(received.append)
    cancel_results = []
    cancel_thread = threading.Thread(target=lambda: cancel_results.append(lifecycle.cancel(pending_id)))
    original_update_status = AppointmentStore.update_status

    def update_then_cancel(self, appointment_id, expected, new, now, **changes) -> bool:
        updated = original_update_status(self, appointment_id, expected, new, now, **changes)
        if new is AppointmentStatus.CONFIRMED and not cancel_thread.is_alive():
            # The cancel is accepted after confirm's first check but before its commit.
            cancel_thread.start()
            deadline = time.monotonic() + 1
            while not lifecycle.cancel_requested(appointment_id) and time.monotonic() < deadline:
                time.sleep(0.005)
        return updated

    monkeypatch.setattr(AppointmentStore, 'update_status', update_then_cancel)

    confirm_result = lifecycle.confirm(pending_id)
    cancel_thread.join(timeout=5)

    assert confirm_result.status is AppointmentStatus.CANCELLED
    assert confirm_result.changed is False
    assert cancel_results[0].changed is True
    assert load_appointment(pending_id).status == AppointmentStatus.CANCELLED.value
    assert AppointmentStatus.CONFIRMED not in [event.new_status for event in received]


def test_transitions_leave_no_appointment_locks_behind(scheduling_engine, make_provider) -> None:
    provider_id = make_provider()
    appointment_ids = [
        scheduling_engine.arbitrator.book(provider_id, client_id, tuesday(hour), 30).appointment_id
        for client_id, hour in enumerate((9, 10, 11, 13, 14))
    ]

    for appointment_id in appointment_ids:
        scheduling_engine.lifecycle.confirm(appointment_id)
        scheduling_engine.lifecycle.cancel(appointment_id)

    assert len(scheduling_engine.lifecycle._locks) == 0
    assert len(scheduling_engine.arbitrator._locks) == 0
