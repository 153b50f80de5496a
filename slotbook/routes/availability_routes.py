from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from slotbook.core import config
from slotbook.core.clock import to_naive_utc
from slotbook.routes.dependencies import ensure_database_ready, get_engine, to_http_error
from slotbook.scheduling.engine import SchedulingEngine
from slotbook.scheduling.errors import SchedulingError
from slotbook.scheduling.intervals import Interval

router = APIRouter(tags=['availability'])

MAX_DURATION_MINUTES = config.MAX_APPOINTMENT_MINUTES


class FreeIntervalResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    duration_minutes: int


class SlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    duration_minutes: int


class AvailabilityCheckResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    available: bool
    conflicting_appointment_id: int | None = None
    reason: str | None = None


def to_free_interval_response(interval: Interval) -> FreeIntervalResponse:
    return FreeIntervalResponse(
        start_time=interval.start,
        end_time=interval.end,
        duration_minutes=int(interval.duration.total_seconds() // 60),
    )


@router.get('/{provider_id}', response_model=list[FreeIntervalResponse])
def list_free_intervals(
    provider_id: int,
    day: date = Query(..., alias='date'),
    duration_minutes: int = Query(..., gt=0, le=MAX_DURATION_MINUTES),
    engine: SchedulingEngine = Depends(get_engine),
):
    ensure_database_ready()

    try:
        intervals = engine.resolver.free_intervals(provider_id, day, duration_minutes)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc

    return [to_free_interval_response(interval) for interval in intervals]


@router.get('/{provider_id}/slots', response_model=list[SlotResponse])
def list_slots(
    provider_id: int,
    day: date = Query(..., alias='date'),
    duration_minutes: int = Query(..., gt=0, le=MAX_DURATION_MINUTES),
    granularity_minutes: int = Query(default=config.SLOT_GRANULARITY_MINUTES, gt=0, le=240),
    engine: SchedulingEngine = Depends(get_engine),
):
    ensure_database_ready()

    try:
        starts = engine.resolver.slots(provider_id, day, duration_minutes, granularity_minutes)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc

    return [
        SlotResponse(
            start_time=start,
            end_time=start + timedelta(minutes=duration_minutes),
            duration_minutes=duration_minutes,
        )
        for start in starts
    ]


@router.get('/{provider_id}/check', response_model=AvailabilityCheckResponse)
def check_availability(
    provider_id: int,
    start: datetime = Query(...),
    duration_minutes: int = Query(..., gt=0, le=MAX_DURATION_MINUTES),
    engine: SchedulingEngine = Depends(get_engine),
):
    if duration_minutes <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Duration must be a positive number of minutes.',
        )

    ensure_database_ready()

    start_time = to_naive_utc(start)
    requested = Interval(start_time, start_time + timedelta(minutes=duration_minutes))

    try:
        result = engine.resolver.is_available(provider_id, requested)
    except SchedulingError as exc:
        raise to_http_error(exc) from exc

    return AvailabilityCheckResponse(
        start_time=requested.start,
        end_time=requested.end,
        available=result.available,
        conflicting_appointment_id=result.conflicting_appointment_id,
        reason=result.reason,
    )
