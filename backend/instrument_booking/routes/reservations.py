from datetime import date

from fastapi import APIRouter, Depends, Query, status

from .. import schemas
from ..booking import BookingSystem, get_booking
from ..errors import NotFoundError
from ..services.collection import EditTarget

router = APIRouter(prefix="/api/reservations", tags=["reservations"])


@router.get("", response_model=list[schemas.Reservation])
async def list_reservations(
    instrument_id: int | None = None,
    booking: BookingSystem = Depends(get_booking),
):
    if instrument_id is not None:
        return await booking.reservations.by_instrument(instrument_id)
    return await booking.reservations.all()


@router.post("", response_model=schemas.Reservation, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: schemas.ReservationCreate,
    booking: BookingSystem = Depends(get_booking),
):
    return await booking.reservations.save(payload)


@router.get("/history", response_model=list[schemas.Reservation])
async def reservation_history(
    instrument_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    booking: BookingSystem = Depends(get_booking),
):
    return await booking.reservations.history(
        instrument_id=instrument_id,
        date_from=date_from,
        date_to=date_to,
    )


@router.get("/lookup", response_model=schemas.Reservation)
async def lookup_reservation(
    instrument_id: int,
    slot_date: date = Query(alias="date"),
    time_slot: schemas.TimeSlot = Query(),
    booking: BookingSystem = Depends(get_booking),
):
    reservation = await booking.reservations.find_by_key(instrument_id, slot_date, time_slot)
    if not reservation:
        raise NotFoundError("slot is open")
    return reservation


@router.get("/conflicts", response_model=list[schemas.DoubleBooking])
async def list_double_bookings(booking: BookingSystem = Depends(get_booking)):
    await booking.reservations.refresh()
    return booking.reservations.double_bookings()


@router.get("/{reservation_id}", response_model=schemas.Reservation)
async def get_reservation(reservation_id: int, booking: BookingSystem = Depends(get_booking)):
    await booking.reservations.refresh()
    reservation = booking.reservations.get(reservation_id)
    if not reservation:
        raise NotFoundError(f"reservation {reservation_id} not found")
    return reservation


@router.put("/{reservation_id}", response_model=schemas.Reservation)
async def replace_reservation(
    reservation_id: int,
    payload: schemas.ReservationCreate,
    booking: BookingSystem = Depends(get_booking),
):
    return await booking.reservations.save(payload, EditTarget(reservation_id))


@router.patch("/{reservation_id}", response_model=schemas.Reservation)
async def update_reservation(
    reservation_id: int,
    payload: schemas.ReservationUpdate,
    booking: BookingSystem = Depends(get_booking),
):
    return await booking.reservations.update(reservation_id, payload)


@router.delete("/{reservation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_reservation(reservation_id: int, booking: BookingSystem = Depends(get_booking)):
    await booking.reservations.delete(reservation_id)
    return
