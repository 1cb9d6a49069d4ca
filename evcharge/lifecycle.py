"""Booking lifecycle.

A booking moves ``pending -> confirmed -> verified`` and ends ``completed``
(or stays ``verified`` once reconciled); ``cancelled`` is absorbing. The
``expired`` flag is one-way.

Every transition with a side effect is a single conditional UPDATE on the
booking row. Whoever matches the row first owns the side effect; everybody
else sees ``rowcount == 0`` and re-reads the row to report why. The slot is
taken at creation and given back exactly once, when ``slot_released`` flips
from false to true (sweep after the end time, or cancellation). Verification
never touches the ledger.

Functions here work inside the caller's transaction and never commit.
"""
from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from prometheus_client import Counter
from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import ledger
from .config import settings
from .errors import (
    AlreadyExpiredError,
    AlreadyVerifiedError,
    BookingStateError,
    NoSlotsAvailableError,
    NotFoundError,
    PaymentFailedError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from .models import (
    BOOKING_CANCELLED,
    BOOKING_COMPLETED,
    BOOKING_CONFIRMED,
    BOOKING_PENDING,
    BOOKING_VERIFIED,
    Booking,
    Station,
    as_uuid,
    utcnow,
)
from .payments import simulate_payment
from .pricing import booking_cost_cents, booking_window


logger = logging.getLogger("evcharge.lifecycle")

TRANSITIONS = Counter(
    "evcharge_booking_transitions_total",
    "Booking lifecycle transitions applied",
    ["transition"],
)

BOOKING_TRANSITIONS = {
    BOOKING_PENDING: {BOOKING_CONFIRMED, BOOKING_CANCELLED},
    BOOKING_CONFIRMED: {BOOKING_VERIFIED, BOOKING_COMPLETED, BOOKING_CANCELLED},
    BOOKING_VERIFIED: set(),
    BOOKING_COMPLETED: set(),
    BOOKING_CANCELLED: set(),
}

# statuses the sweeper reconciles; verified bookings keep their status
RECONCILABLE_STATUSES = (BOOKING_CONFIRMED, BOOKING_VERIFIED)
CANCELLABLE_STATUSES = tuple(s for s, targets in BOOKING_TRANSITIONS.items() if BOOKING_CANCELLED in targets)

DISPLAY_VERIFIED_EXPIRED = "verified & expired"
DISPLAY_EXPIRED = "expired"


def can_transition(current: str, target: str) -> bool:
    return target in BOOKING_TRANSITIONS.get(current, set())


def _log(event: str, **fields) -> None:
    payload = {"event": event}
    payload.update({k: (str(v) if v is not None else None) for k, v in fields.items()})
    logger.info(json.dumps(payload))


@contextmanager
def _storage_errors(db: Session, op: str):
    try:
        yield
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(json.dumps({"event": "storage_error", "op": op, "error": e.__class__.__name__}))
        raise StorageError() from e


def parse_start_time(value) -> datetime:
    """Normalize a start time to naive UTC.

    Accepts datetimes and ISO-8601 strings (a trailing ``Z`` included). Naive
    input is taken as UTC.
    """
    if value is None:
        raise ValidationError("start_time is required")
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError("start_time is not a valid ISO-8601 timestamp")
    else:
        raise ValidationError("start_time is not a valid ISO-8601 timestamp")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _validate_duration(duration_minutes) -> int:
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
        raise ValidationError("duration_minutes must be an integer")
    if duration_minutes < settings.MIN_DURATION_MINUTES:
        raise ValidationError(f"Minimum booking duration is {settings.MIN_DURATION_MINUTES} minutes")
    if duration_minutes > settings.MAX_DURATION_MINUTES:
        raise ValidationError(f"Maximum booking duration is {settings.MAX_DURATION_MINUTES} minutes")
    return duration_minutes


def create_booking(
    db: Session,
    *,
    user_id: str,
    station_id,
    start_time,
    duration_minutes: int,
    rate_per_hour_cents: Optional[int] = None,
    payment_method: Optional[str] = None,
    payment_reference: Optional[str] = None,
) -> Booking:
    """Pay for and confirm a booking, taking one slot from the station.

    All validation and the simulated payment happen before the first write.
    """
    duration = _validate_duration(duration_minutes)
    start = parse_start_time(start_time)
    sid = as_uuid(station_id)
    if not user_id:
        raise ValidationError("user_id is required")
    with _storage_errors(db, "create"):
        station = db.get(Station, sid) if sid is not None else None
        if station is None:
            raise NotFoundError("Station not found")
        if station.status != "operational":
            raise BookingStateError(f"Station is {station.status}")
        rate = station.rate_per_hour_cents if rate_per_hour_cents is None else rate_per_hour_cents
        if rate < 0:
            raise ValidationError("rate_per_hour_cents must not be negative")
        total = booking_cost_cents(rate, duration)

        payment = simulate_payment(total, payment_method, payment_reference)
        if not payment.ok:
            raise PaymentFailedError("Payment failed, booking not created")

        held = ledger.decrement(db, station.id)
        if not held and settings.REJECT_WHEN_FULL:
            raise NoSlotsAvailableError()

        start, end = booking_window(start, duration)
        booking = Booking(
            user_id=str(user_id),
            station_id=station.id,
            station_name=station.name,
            start_time=start,
            end_time=end,
            duration_minutes=duration,
            rate_per_hour_cents=rate,
            total_cost_cents=total,
            currency=station.currency,
            status=BOOKING_CONFIRMED,
            payment_status="completed",
            payment_method=payment.method,
            expired=False,
            slot_held=held,
            slot_released=False,
        )
        db.add(booking)
        db.flush()
    TRANSITIONS.labels("create").inc()
    _log("booking_created", booking_id=booking.id, station_id=station.id, user_id=user_id, slot_held=held)
    return booking


def _reload(db: Session, booking_id) -> Optional[Booking]:
    b = db.get(Booking, booking_id)
    if b is not None:
        db.refresh(b)
    return b


def verify_booking(db: Session, booking_id, admin_id: str, *, now: Optional[datetime] = None) -> Booking:
    """Mark a scanned booking as used. The slot stays taken until the sweep."""
    now = now or utcnow()
    bid = as_uuid(booking_id)
    if bid is None:
        raise NotFoundError("Booking not found")
    with _storage_errors(db, "verify"):
        booking = db.get(Booking, bid)
        if booking is None:
            raise NotFoundError("Booking not found")
        owner = db.execute(select(Station.owner_id).where(Station.id == booking.station_id)).scalar_one_or_none()
        if owner is None or str(owner) != str(admin_id):
            raise PermissionDeniedError("Booking belongs to a station you do not manage")

        res = db.execute(
            update(Booking)
            .where(
                Booking.id == bid,
                Booking.status == BOOKING_CONFIRMED,
                Booking.expired.is_(False),
                Booking.end_time > now,
            )
            .values(status=BOOKING_VERIFIED, expired=True, verified_at=now, verified_by=str(admin_id))
            .execution_options(synchronize_session=False)
        )
        booking = _reload(db, bid)
    if res.rowcount == 1:
        TRANSITIONS.labels("verify").inc()
        _log("booking_verified", booking_id=bid, admin_id=admin_id)
        return booking
    if booking.status == BOOKING_VERIFIED:
        raise AlreadyVerifiedError()
    if booking.status == BOOKING_PENDING:
        raise BookingStateError("Booking is not paid yet")
    raise AlreadyExpiredError()


def expire_and_complete(db: Session, booking_id, *, now: Optional[datetime] = None) -> bool:
    """Close out a booking whose window has passed and give its slot back.

    Returns True only for the caller that actually reconciled the booking;
    repeated or concurrent calls return False and leave the ledger alone.
    """
    now = now or utcnow()
    bid = as_uuid(booking_id)
    if bid is None:
        raise NotFoundError("Booking not found")
    with _storage_errors(db, "expire"):
        res = db.execute(
            update(Booking)
            .where(
                Booking.id == bid,
                Booking.slot_released.is_(False),
                Booking.status.in_(RECONCILABLE_STATUSES),
                Booking.end_time <= now,
            )
            .values(
                status=case((Booking.status == BOOKING_VERIFIED, BOOKING_VERIFIED), else_=BOOKING_COMPLETED),
                expired=True,
                slot_released=True,
                completed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            return False
        row = db.execute(select(Booking.station_id, Booking.slot_held).where(Booking.id == bid)).one()
        released = bool(row.slot_held) and ledger.increment(db, row.station_id, missing_ok=True)
        cached = db.identity_map.get(db.identity_key(Booking, bid))
        if cached is not None:
            db.expire(cached)
    TRANSITIONS.labels("expire").inc()
    _log("booking_reconciled", booking_id=bid, station_id=row.station_id, slot_released=released)
    return True


def cancel_booking(db: Session, booking_id, user_id: str, *, now: Optional[datetime] = None) -> Booking:
    """Owner cancellation before the booking starts; gives the slot back once."""
    now = now or utcnow()
    bid = as_uuid(booking_id)
    if bid is None:
        raise NotFoundError("Booking not found")
    with _storage_errors(db, "cancel"):
        booking = db.get(Booking, bid)
        if booking is None:
            raise NotFoundError("Booking not found")
        if str(booking.user_id) != str(user_id):
            raise PermissionDeniedError("Not your booking")
        if booking.status == BOOKING_CANCELLED:
            return booking
        if not can_transition(booking.status, BOOKING_CANCELLED):
            if booking.status == BOOKING_VERIFIED:
                raise AlreadyVerifiedError("Verified bookings cannot be cancelled")
            raise AlreadyExpiredError("Booking can no longer be cancelled")
        if booking.start_time <= now:
            raise BookingStateError("Booking already started")

        res = db.execute(
            update(Booking)
            .where(
                Booking.id == bid,
                Booking.status.in_(CANCELLABLE_STATUSES),
                Booking.slot_released.is_(False),
                Booking.expired.is_(False),
                Booking.start_time > now,
            )
            .values(status=BOOKING_CANCELLED, slot_released=True, cancelled_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1 and booking.slot_held:
            ledger.increment(db, booking.station_id, missing_ok=True)
        booking = _reload(db, bid)
    if res.rowcount == 1:
        TRANSITIONS.labels("cancel").inc()
        _log("booking_cancelled", booking_id=bid, user_id=user_id)
        return booking
    if booking.status == BOOKING_CANCELLED:
        return booking
    if booking.status == BOOKING_VERIFIED:
        raise AlreadyVerifiedError("Verified bookings cannot be cancelled")
    raise AlreadyExpiredError("Booking can no longer be cancelled")


def is_expired(booking: Booking, now: datetime) -> bool:
    return bool(booking.expired) or booking.end_time <= now


def display_state(booking: Booking, now: datetime) -> str:
    """What a user or operator should see for a booking at ``now``."""
    if booking.status == BOOKING_VERIFIED:
        return DISPLAY_VERIFIED_EXPIRED if is_expired(booking, now) else BOOKING_VERIFIED
    if booking.status in (BOOKING_COMPLETED, BOOKING_CANCELLED):
        return booking.status
    if is_expired(booking, now):
        return DISPLAY_EXPIRED
    return booking.status


__all__ = [
    "can_transition",
    "cancel_booking",
    "create_booking",
    "display_state",
    "expire_and_complete",
    "is_expired",
    "parse_start_time",
    "verify_booking",
]
