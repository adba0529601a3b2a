from fastapi import APIRouter, Depends, status

from .. import schemas
from ..booking import BookingSystem, get_booking
from ..errors import NotFoundError
from ..services.collection import EditTarget

router = APIRouter(prefix="/api/instruments", tags=["instruments"])


@router.get("", response_model=list[schemas.Instrument])
async def list_instruments(booking: BookingSystem = Depends(get_booking)):
    return await booking.registry.list()


@router.post("", response_model=schemas.Instrument, status_code=status.HTTP_201_CREATED)
async def create_instrument(
    payload: schemas.InstrumentCreate,
    booking: BookingSystem = Depends(get_booking),
):
    return await booking.registry.save(payload)


@router.get("/{instrument_id}", response_model=schemas.Instrument)
async def get_instrument(instrument_id: int, booking: BookingSystem = Depends(get_booking)):
    await booking.registry.refresh()
    instrument = booking.registry.get(instrument_id)
    if not instrument:
        raise NotFoundError(f"instrument {instrument_id} not found")
    return instrument


@router.put("/{instrument_id}", response_model=schemas.Instrument)
async def replace_instrument(
    instrument_id: int,
    payload: schemas.InstrumentCreate,
    booking: BookingSystem = Depends(get_booking),
):
    return await booking.registry.save(payload, EditTarget(instrument_id))


@router.patch("/{instrument_id}", response_model=schemas.Instrument)
async def update_instrument(
    instrument_id: int,
    payload: schemas.InstrumentUpdate,
    booking: BookingSystem = Depends(get_booking),
):
    return await booking.registry.update(instrument_id, payload)


@router.delete("/{instrument_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_instrument(instrument_id: int, booking: BookingSystem = Depends(get_booking)):
    await booking.registry.remove(instrument_id)
    return
