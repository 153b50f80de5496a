from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from slotbook.database import SessionLocal, ensure_appointment_schema, ensure_provider_schema
from slotbook.scheduling.engine import SchedulingEngine, get_scheduling_engine
from slotbook.scheduling.errors import (
    AppointmentNotFoundError,
    InvalidRequestError,
    LockTimeoutError,
    ProviderNotFoundError,
    SchedulingError,
    StorageUnavailableError,
)

DATABASE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL and database credentials.'
TRY_AGAIN = 'The calendar is busy right now. Please try again.'


def ensure_database_ready() -> None:
    try:
        ensure_provider_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_engine() -> SchedulingEngine:
    return get_scheduling_engine()


def to_http_error(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, InvalidRequestError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, ProviderNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Provider not found.')
    if isinstance(exc, AppointmentNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.')
    if isinstance(exc, LockTimeoutError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=TRY_AGAIN)
    if isinstance(exc, StorageUnavailableError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail='Scheduling failed.')
