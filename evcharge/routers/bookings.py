from datetime import datetime
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth import CurrentUser, get_current_user, get_db
from ..errors import NotFoundError
from ..lifecycle import cancel_booking, create_booking, display_state
from ..models import Booking, as_uuid, utcnow
from ..qr import qr_envelope, qr_text
from ..schemas import BookingOut, BookingsListOut, CreateBookingIn, TicketOut


router = APIRouter(prefix="/bookings", tags=["bookings"])


def _to_booking_out(b: Booking, now: datetime | None = None) -> BookingOut:
    return BookingOut(
        id=str(b.id),
        user_id=b.user_id,
        station_id=str(b.station_id),
        station_name=b.station_name,
        start_time=b.start_time,
        end_time=b.end_time,
        duration_minutes=b.duration_minutes,
        total_cost_cents=b.total_cost_cents,
        currency=b.currency,
        status=b.status,
        payment_status=b.payment_status,
        expired=bool(b.expired),
        display_state=display_state(b, now or utcnow()),
        qr_code=b.qr_code,
        expires_at=b.expires_at,
        verified_at=b.verified_at,
        created_at=b.created_at,
    )


def _own_booking(db: Session, booking_id: str, user: CurrentUser) -> Booking:
    bid = as_uuid(booking_id)
    b = db.get(Booking, bid) if bid is not None else None
    if b is None or b.user_id != user.id:
        raise NotFoundError("Booking not found")
    return b


@router.post("", response_model=BookingOut)
def create(payload: CreateBookingIn, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    b = create_booking(
        db,
        user_id=user.id,
        station_id=payload.station_id,
        start_time=payload.start_time,
        duration_minutes=payload.duration_minutes,
        payment_method=payload.payment_method,
        payment_reference=payload.payment_reference,
    )
    return _to_booking_out(b)


@router.get("", response_model=BookingsListOut)
def list_my_bookings(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = db.execute(
        select(Booking).where(Booking.user_id == user.id).order_by(Booking.created_at.desc())
    ).scalars().all()
    now = utcnow()
    return BookingsListOut(bookings=[_to_booking_out(b, now) for b in rows])


@router.get("/{booking_id}", response_model=BookingOut)
def get_booking(booking_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return _to_booking_out(_own_booking(db, booking_id, user))


@router.get("/{booking_id}/ticket", response_model=TicketOut)
def booking_ticket(booking_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    b = _own_booking(db, booking_id, user)
    return TicketOut(booking_id=str(b.id), qr_text=qr_text(b), qr_envelope=qr_envelope(b))


@router.post("/{booking_id}/cancel", response_model=BookingOut)
def cancel(booking_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    _own_booking(db, booking_id, user)
    b = cancel_booking(db, booking_id, user.id)
    return _to_booking_out(b)
