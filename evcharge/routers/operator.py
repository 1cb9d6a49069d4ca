from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth import CurrentUser, get_db, require_admin
from ..config import settings
from ..database import SessionLocal
from ..errors import NotFoundError
from ..lifecycle import verify_booking
from ..qr import decode_payload
from ..schemas import BookingOut, SweepOut, VerifyIn
from ..sweeper import run_sweep_once
from .bookings import _to_booking_out


router = APIRouter(prefix="/operator", tags=["operator"])


@router.post("/verify", response_model=BookingOut)
def verify_scan(payload: VerifyIn, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    """Check in a booking from the text read off its QR code."""
    booking_id = decode_payload(payload.payload)
    if booking_id is None:
        raise NotFoundError("Booking not found")
    b = verify_booking(db, booking_id, admin.id)
    return _to_booking_out(b)


@router.post("/sweep", response_model=SweepOut)
def sweep_now(
    limit: Optional[int] = Query(default=None, ge=1, le=10000),
    admin: CurrentUser = Depends(require_admin),
):
    # DEV only; production sweeps run from celery beat or cron
    if settings.ENV != "dev":
        raise HTTPException(status_code=403, detail="Disabled outside dev")
    return SweepOut(**run_sweep_once(SessionLocal, limit=limit).as_dict())
