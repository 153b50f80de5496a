from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator

from slotbook.core import config
from slotbook.core.clock import to_naive_utc
from slotbook.routes.dependencies import TRY_AGAIN, ensure_database_ready, get_engine, to_http_error
from slotbook.scheduling.blocks import TravelBufferPolicy
from slotbook.scheduling.engine import SchedulingEngine
from slotbook.scheduling.errors import SchedulingError
from slotbook.scheduling.lifecycle import TransitionResult

router = APIRouter(tags=['bookings'])

MAX_DURATION_MINUTES = config.MAX_APPOINTMENT_MINUTES
MAX_TRAVEL_MINUTES = config.MAX_TRAVEL_MINUTES
MAX_APPOINTMENT_NOTES_LENGTH = 600


class CreateBookingRequest(BaseModel):
    provider_id: int
    client_id: int
    start_time: datetime
    duration_minutes: int
    pre_travel_minutes: int | None = None
    post_travel_minutes: int | None = None
    notes: str | None = None

    @field_validator('start_time')
    @classmethod
    def normalize_start_time(cls, value: datetime) -> datetime:
        return to_naive_utc(value).replace(second=0, microsecond=0)

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Duration must be a positive number of minutes.')
        if value > MAX_DURATION_MINUTES:
            raise ValueError('Appointments cannot last longer than a day.')
        return value

    @field_validator('pre_travel_minutes', 'post_travel_minutes')
    @classmethod
    def validate_travel_minutes(cls, value: int | None) -> int | None:
        if value is None:
            return None
        if value < 0 or value > MAX_TRAVEL_MINUTES:
            raise ValueError(f'Travel buffers must be between 0 and {MAX_TRAVEL_MINUTES} minutes.')
        return value

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized

    def travel_buffer(self) -> TravelBufferPolicy | None:
        if self.pre_travel_minutes is None and self.post_travel_minutes is None:
            return None
        return TravelBufferPolicy.default().with_fallback(self.pre_travel_minutes, self.post_travel_minutes)


class CancelBookingRequest(BaseModel):
    cancelled_by: Literal['provider', 'client'] = 'provider'


class ReplyRequest(BaseModel):
    body: str

    @field_validator('body')
    @classmethod
    def validate_body(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Reply body is required.')
        return normalized


class BookingResponse(BaseModel):
    success: bool
    appointment_id: int | None = None
    status: str | None = None
    expires_at: datetime | None = None


class AppointmentResponse(BaseModel):
    id: int
    provider_id: int
    client_id: int
    scheduled_at: datetime
    duration_minutes: int
    status: str
    created_at: datetime
    expires_at: datetime | None = None
    pre_travel_minutes: int | None = None
    post_travel_minutes: int | None = None
    reply_count: int = 0
    cancelled_by: str | None = None
    notes: str | None = None

    class Config:
        from_attributes = True


class TransitionResponse(BaseModel):
    appointment_id: int
    status: str
    changed: bool
    already_processed: bool
    message: str
    reply_count: int | None = None


def to_transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        appointment_id=result.appointment_id,
        status=result.status.value,
        changed=result.changed,
        already_processed=result.already_processed,
        message=result.message,
        reply_count=result.reply_count,
    )


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(data: CreateBookingRequest, engine: SchedulingEngine = Depends(get_engine)):
    if data.start_time <= engine.clock():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Appointments must be scheduled in the future.',
        )

    ensure_database_ready()

    try:
        result = engine.arbitrator.book(
            data.provider_id,
            data.client_id,
            data.start_time,
            data.duration_minutes,
            buffer=data.travel_buffer(),
            notes=data.notes,
        )
        if not result.success:
            if result.retryable:
                raise HTTPException(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    detail=TRY_AGAIN,
                )
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=result.conflict_reason,
            )
    except SchedulingError as exc:
        raise to_http_error(exc) from exc

    return BookingResponse(
        success=True,
        appointment_id=result.appointment_id,
        status=result.status,
        expires_at=result.expires_at,
    )


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_booking(appointment_id: int, engine: SchedulingEngine = Depends(get_engine)):
    ensure_database_ready()

    try:
        return engine.lifecycle.get(appointment_id)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc


@router.post('/{appointment_id}/confirm', response_model=TransitionResponse)
def confirm_booking(appointment_id: int, engine: SchedulingEngine = Depends(get_engine)):
    ensure_database_ready()

    try:
        result = engine.lifecycle.confirm(appointment_id)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc

    return to_transition_response(result)


@router.post('/{appointment_id}/cancel', response_model=TransitionResponse)
def cancel_booking(
    appointment_id: int,
    data: CancelBookingRequest,
    engine: SchedulingEngine = Depends(get_engine),
):
    ensure_database_ready()

    try:
        result = engine.lifecycle.cancel(appointment_id, cancelled_by=data.cancelled_by)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc

    return to_transition_response(result)


@router.post('/{appointment_id}/replies', response_model=TransitionResponse)
def receive_reply(
    appointment_id: int,
    data: ReplyRequest,
    engine: SchedulingEngine = Depends(get_engine),
):
    ensure_database_ready()

    try:
        result = engine.lifecycle.process_reply(appointment_id, data.body)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc

    return to_transition_response(result)
