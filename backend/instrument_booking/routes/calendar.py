from datetime import date

from fastapi import APIRouter, Depends, Query

from .. import schemas
from ..booking import BookingSystem, get_booking
from ..services import calendar as projector

router = APIRouter(prefix="/api", tags=["calendar"])


@router.get("/calendar", response_model=schemas.CalendarGrid)
async def get_calendar(
    today: date | None = None,
    weeks: int = Query(default=projector.DEFAULT_WEEK_COUNT, ge=1, le=8),
    instrument_id: int | None = None,
    booking: BookingSystem = Depends(get_booking),
):
    return await booking.calendar(today=today, week_count=weeks, instrument_id=instrument_id)


@router.get("/status", response_model=schemas.ConnectionStatus)
async def connection_status(booking: BookingSystem = Depends(get_booking)):
    return booking.status()
