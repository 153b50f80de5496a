from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from slotbook.core import config


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    config.DATABASE_URL,
    echo=config.DATABASE_ECHO,
    connect_args=_connect_args(config.DATABASE_URL),
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_provider_schema_checked = False
_appointment_schema_checked = False


def ensure_provider_schema() -> None:
    global _provider_schema_checked

    if _provider_schema_checked:
        return

    with _schema_lock:
        if _provider_schema_checked:
            return

        inspector = inspect(engine)

        if 'providers' not in inspector.get_table_names():
            _provider_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('providers')}
        migration_steps = [
            ('timezone', "ALTER TABLE providers ADD COLUMN timezone VARCHAR DEFAULT 'UTC'"),
            ('pre_travel_minutes', 'ALTER TABLE providers ADD COLUMN pre_travel_minutes INTEGER'),
            ('post_travel_minutes', 'ALTER TABLE providers ADD COLUMN post_travel_minutes INTEGER'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))

        _provider_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('pre_travel_minutes', 'ALTER TABLE appointments ADD COLUMN pre_travel_minutes INTEGER'),
            ('post_travel_minutes', 'ALTER TABLE appointments ADD COLUMN post_travel_minutes INTEGER'),
            ('reply_count', 'ALTER TABLE appointments ADD COLUMN reply_count INTEGER DEFAULT 0'),
            ('cancelled_by', 'ALTER TABLE appointments ADD COLUMN cancelled_by VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_provider_start '
                    'ON appointments(provider_id, scheduled_at)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_status_expiry ON appointments(status, expires_at)')
            )

        _appointment_schema_checked = True
