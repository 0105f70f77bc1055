from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_session
from backend.app.routers.dependencies import get_reservation_service
from backend.app.routers.schemas import CancelOut, ReservationIn, ReservationOut, SlotRef
from backend.app.services.reservations import Reservation, ReservationService


router = APIRouter(prefix="/reservations", tags=["reservations"])


def _out(reservation: Reservation) -> ReservationOut:
    return ReservationOut(
        booking_id=reservation.booking_id,
        date=reservation.date,
        time=reservation.time,
        status=reservation.status,
    )


@router.post("", response_model=ReservationOut, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationIn,
    session: AsyncSession = Depends(get_session),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationOut:
    async with session.begin():
        reservation = await service.reserve(payload.date, payload.time, payload.booking_type)
    return _out(reservation)


@router.post("/cancel", response_model=CancelOut)
async def cancel_slot(
    payload: SlotRef,
    session: AsyncSession = Depends(get_session),
    service: ReservationService = Depends(get_reservation_service),
) -> CancelOut:
    async with session.begin():
        released = await service.cancel(payload.date, payload.time)
    return CancelOut(released=released)


@router.post("/{booking_id}/cancel", response_model=ReservationOut)
async def cancel_booking(
    booking_id: int,
    session: AsyncSession = Depends(get_session),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationOut:
    async with session.begin():
        reservation = await service.cancel_booking(booking_id)
    return _out(reservation)
