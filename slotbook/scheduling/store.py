"""
Storage collaborator for the scheduling engine.

``AppointmentStore`` wraps a single SQLAlchemy session. Callers own the
transaction: nothing here commits.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterator, List, Sequence

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from slotbook.core import config
from slotbook.models.appointment import LIVE_STATUSES, Appointment, AppointmentStatus
from slotbook.models.provider import Provider
from slotbook.scheduling.errors import ProviderNotFoundError, StorageUnavailableError
from slotbook.scheduling.intervals import Interval
from slotbook.scheduling.working_hours import WorkingHoursConfig

logger = logging.getLogger(__name__)

# How far an appointment can reach past its start (longest visit plus post-travel)
# and before it (pre-travel). Loads widen the queried range by these spans.
APPOINTMENT_LOOKBACK = timedelta(minutes=config.MAX_APPOINTMENT_MINUTES + config.MAX_TRAVEL_MINUTES)
APPOINTMENT_LOOKAHEAD = timedelta(minutes=config.MAX_TRAVEL_MINUTES)


class AppointmentStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_provider(self, provider_id: int) -> Provider:
        provider = self.db.query(Provider).filter(Provider.id == provider_id).first()
        if provider is None:
            raise ProviderNotFoundError(provider_id)
        return provider

    def lock_provider(self, provider_id: int) -> Provider:
        """Row-lock the provider for the rest of the transaction.

        This serializes bookers across processes on backends that support
        ``SELECT ... FOR UPDATE``; SQLite ignores the clause.
        """
        provider = (
            self.db.query(Provider)
            .filter(Provider.id == provider_id)
            .with_for_update()
            .first()
        )
        if provider is None:
            raise ProviderNotFoundError(provider_id)
        return provider

    def load_working_hours(self, provider_id: int) -> WorkingHoursConfig:
        provider = self.get_provider(provider_id)
        return WorkingHoursConfig.from_stored(
            provider.working_hours,
            timezone=provider.timezone,
            owner=f'provider {provider_id}',
        )

    def load_appointments(
        self,
        provider_id: int,
        date_range: Interval,
        statuses: Sequence[str] = LIVE_STATUSES,
    ) -> List[Appointment]:
        return (
            self.db.query(Appointment)
            .filter(
                Appointment.provider_id == provider_id,
                Appointment.status.in_(list(statuses)),
                Appointment.scheduled_at >= date_range.start - APPOINTMENT_LOOKBACK,
                Appointment.scheduled_at < date_range.end + APPOINTMENT_LOOKAHEAD,
            )
            .order_by(Appointment.scheduled_at.asc(), Appointment.id.asc())
            .all()
        )

    def get(self, appointment_id: int) -> Appointment | None:
        return (
            self.db.query(Appointment)
            .populate_existing()
            .filter(Appointment.id == appointment_id)
            .first()
        )

    def insert_pending(self, appointment: Appointment) -> int:
        appointment.status = AppointmentStatus.PENDING.value
        self.db.add(appointment)
        self.db.flush()
        return appointment.id

    def update_status(
        self,
        appointment_id: int,
        expected: AppointmentStatus,
        new: AppointmentStatus,
        now: datetime,
        **changes: object,
    ) -> bool:
        """Conditionally move one row from ``expected`` to ``new``.

        Returns False when the row is no longer in ``expected``; whoever
        committed first has won.
        """
        values = {Appointment.status: new.value, Appointment.updated_at: now}
        for column_name, value in changes.items():
            values[getattr(Appointment, column_name)] = value

        updated = (
            self.db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.status == expected.value)
            .update(values, synchronize_session=False)
        )
        return updated == 1

    def find_due_for_expiry(self, now: datetime, provider_id: int | None = None) -> List[Appointment]:
        query = self.db.query(Appointment).filter(
            Appointment.status == AppointmentStatus.PENDING.value,
            Appointment.expires_at.is_not(None),
            Appointment.expires_at < now,
        )
        if provider_id is not None:
            query = query.filter(Appointment.provider_id == provider_id)
        return query.order_by(Appointment.expires_at.asc()).all()

    def record_reply(self, appointment_id: int) -> int:
        updated = (
            self.db.query(Appointment)
            .filter(Appointment.id == appointment_id)
            .update({Appointment.reply_count: func.coalesce(Appointment.reply_count, 0) + 1}, synchronize_session=False)
        )
        if updated != 1:
            return 0
        return self.db.query(Appointment.reply_count).filter(Appointment.id == appointment_id).scalar()


@contextmanager
def store_transaction(session_factory: Callable[[], Session]) -> Iterator[AppointmentStore]:
    """Run one unit of work; commit on success, roll back and wrap storage errors."""
    db = session_factory()
    try:
        yield AppointmentStore(db)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Scheduling transaction failed and was rolled back')
        raise StorageUnavailableError('Scheduling storage is unavailable.') from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
