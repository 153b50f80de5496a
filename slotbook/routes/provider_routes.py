from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from slotbook.core import config
from slotbook.models.provider import Provider
from slotbook.routes.dependencies import DATABASE_UNAVAILABLE, ensure_database_ready, get_db
from slotbook.scheduling.working_hours import (
    DayHours,
    WorkingHoursConfig,
    normalize_timezone,
    normalize_weekdays,
    require_valid_ranges,
)

router = APIRouter(tags=['providers'])

MAX_TRAVEL_MINUTES = config.MAX_TRAVEL_MINUTES


def validate_travel_minutes(value: int | None) -> int | None:
    if value is None:
        return None
    if value < 0 or value > MAX_TRAVEL_MINUTES:
        raise ValueError(f'Travel buffers must be between 0 and {MAX_TRAVEL_MINUTES} minutes.')
    return value


class CreateProviderRequest(BaseModel):
    name: str
    email: str
    timezone: str = config.DEFAULT_TIMEZONE
    working_hours: dict[str, DayHours] | None = None
    pre_travel_minutes: int | None = None
    post_travel_minutes: int | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Provider name is required.')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized or '@' not in normalized:
            raise ValueError('A valid email is required.')
        return normalized

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        return normalize_timezone(value)

    @field_validator('working_hours')
    @classmethod
    def validate_working_hours(cls, value: dict[str, DayHours] | None) -> dict[str, DayHours] | None:
        if value is None:
            return None
        return require_valid_ranges(normalize_weekdays(value))

    @field_validator('pre_travel_minutes', 'post_travel_minutes')
    @classmethod
    def validate_travel(cls, value: int | None) -> int | None:
        return validate_travel_minutes(value)


class WorkingHoursRequest(BaseModel):
    timezone: str | None = None
    days: dict[str, DayHours]

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_timezone(value)

    @field_validator('days')
    @classmethod
    def validate_days(cls, value: dict[str, DayHours]) -> dict[str, DayHours]:
        return require_valid_ranges(normalize_weekdays(value))


class TravelBufferRequest(BaseModel):
    pre_travel_minutes: int
    post_travel_minutes: int

    @field_validator('pre_travel_minutes', 'post_travel_minutes')
    @classmethod
    def validate_travel(cls, value: int) -> int:
        return validate_travel_minutes(value)


class ProviderResponse(BaseModel):
    id: int
    name: str
    email: str | None = None
    timezone: str
    pre_travel_minutes: int | None = None
    post_travel_minutes: int | None = None

    class Config:
        from_attributes = True


class WorkingHoursResponse(BaseModel):
    provider_id: int
    timezone: str
    days: dict[str, DayHours]


def get_provider_or_404(provider_id: int, db: Session) -> Provider:
    provider = db.query(Provider).filter(Provider.id == provider_id).first()
    if not provider:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Provider not found.',
        )
    return provider


def to_working_hours_response(provider: Provider) -> WorkingHoursResponse:
    hours = WorkingHoursConfig.from_stored(
        provider.working_hours,
        timezone=provider.timezone,
        owner=f'provider {provider.id}',
    )
    return WorkingHoursResponse(provider_id=provider.id, timezone=hours.timezone, days=hours.days)


@router.post('', response_model=ProviderResponse, status_code=status.HTTP_201_CREATED)
def create_provider(data: CreateProviderRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    if data.working_hours is None:
        hours = WorkingHoursConfig.default(data.timezone)
    else:
        hours = WorkingHoursConfig(timezone=data.timezone, days=data.working_hours)

    try:
        provider = Provider(
            name=data.name,
            email=data.email,
            timezone=hours.timezone,
            working_hours=hours.to_stored(),
            pre_travel_minutes=data.pre_travel_minutes,
            post_travel_minutes=data.post_travel_minutes,
        )
        db.add(provider)
        db.commit()
        db.refresh(provider)

        return provider
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='A provider with this email already exists.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.get('/{provider_id}/working-hours', response_model=WorkingHoursResponse)
def get_working_hours(provider_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        provider = get_provider_or_404(provider_id, db)
        return to_working_hours_response(provider)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.put('/{provider_id}/working-hours', response_model=WorkingHoursResponse)
def replace_working_hours(provider_id: int, data: WorkingHoursRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        provider = get_provider_or_404(provider_id, db)

        hours = WorkingHoursConfig(timezone=data.timezone or provider.timezone, days=data.days)

        provider.timezone = hours.timezone
        provider.working_hours = hours.to_stored()
        db.commit()
        db.refresh(provider)

        return to_working_hours_response(provider)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc


@router.put('/{provider_id}/travel-buffer', response_model=ProviderResponse)
def update_travel_buffer(provider_id: int, data: TravelBufferRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        provider = get_provider_or_404(provider_id, db)
        provider.pre_travel_minutes = data.pre_travel_minutes
        provider.post_travel_minutes = data.post_travel_minutes
        db.commit()
        db.refresh(provider)

        return provider
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE,
        ) from exc
