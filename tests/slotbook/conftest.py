import os
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from slotbook.core.clock import FrozenClock  # noqa: E402
from slotbook.database import Base  # noqa: E402
from slotbook.models.appointment import Appointment, AppointmentStatus  # noqa: E402
from slotbook.models.provider import Provider  # noqa: E402
from slotbook.scheduling.blocks import TravelBufferPolicy  # noqa: E402
from slotbook.scheduling.engine import SchedulingEngine  # noqa: E402

TUESDAY_ONLY = {
    'tuesday': {
        'enabled': True,
        'start': '09:00',
        'end': '18:00',
        'breaks': [{'start': '12:00', 'end': '13:00', 'label': 'lunch'}],
    },
}


@pytest.fixture
def session_factory(tmp_path):
    # File-backed so that worker threads share one database.
    engine = create_engine(
        f'sqlite:///{tmp_path / "slotbook-test.db"}',
        connect_args={'check_same_thread': False},
    )
    Base.metadata.create_all(bind=engine, tables=[Provider.__table__, Appointment.__table__])
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield testing_session_local
    finally:
        Base.metadata.drop_all(bind=engine, tables=[Appointment.__table__, Provider.__table__])
        engine.dispose()


@pytest.fixture
def clock() -> FrozenClock:
    # Tuesday, 1 July 2025, before opening.
    return FrozenClock(datetime(2025, 7, 1, 8, 0))


@pytest.fixture
def scheduling_engine(session_factory, clock) -> SchedulingEngine:
    return SchedulingEngine(
        session_factory,
        clock=clock,
        expiry_minutes=30,
        lock_timeout=2,
        default_buffer=TravelBufferPolicy(0, 0),
    )


@pytest.fixture
def make_provider(session_factory):
    counter = {'value': 0}

    def _make_provider(
        working_hours=None,
        timezone: str = 'UTC',
        pre_travel_minutes: int | None = 0,
        post_travel_minutes: int | None = 0,
    ) -> int:
        counter['value'] += 1
        db = session_factory()
        try:
            provider = Provider(
                name=f'Barber {counter["value"]}',
                email=f'barber{counter["value"]}@example.com',
                timezone=timezone,
                working_hours=TUESDAY_ONLY if working_hours is None else working_hours,
                pre_travel_minutes=pre_travel_minutes,
                post_travel_minutes=post_travel_minutes,
            )
            db.add(provider)
            db.commit()
            return provider.id
        finally:
            db.close()

    return _make_provider


@pytest.fixture
def add_appointment(session_factory, clock):
    def _add_appointment(
        provider_id: int,
        scheduled_at: datetime,
        duration_minutes: int = 60,
        status: AppointmentStatus = AppointmentStatus.CONFIRMED,
        pre_travel_minutes: int | None = 0,
        post_travel_minutes: int | None = 0,
        expires_at: datetime | None = None,
        client_id: int = 1,
    ) -> int:
        now = clock()
        db = session_factory()
        try:
            appointment = Appointment(
                provider_id=provider_id,
                client_id=client_id,
                scheduled_at=scheduled_at,
                duration_minutes=duration_minutes,
                status=status.value,
                created_at=now,
                expires_at=expires_at or now + timedelta(minutes=30),
                updated_at=now,
                pre_travel_minutes=pre_travel_minutes,
                post_travel_minutes=post_travel_minutes,
                reply_count=0,
            )
            db.add(appointment)
            db.commit()
            return appointment.id
        finally:
            db.close()

    return _add_appointment


@pytest.fixture
def load_appointment(session_factory):
    def _load_appointment(appointment_id: int) -> Appointment:
        db = session_factory()
        try:
            appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
            db.expunge(appointment)
            return appointment
        finally:
            db.close()

    return _load_appointment
