import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from evcharge import ledger, lifecycle
from evcharge.config import settings
from evcharge.errors import (
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
from evcharge.models import Booking

from .conftest import ADMIN_A, ADMIN_B, USER_1, USER_2, available_slots, load_booking


def _book(db, station, start, minutes=30, user=USER_1, **kw):
    b = lifecycle.create_booking(
        db, user_id=user, station_id=station.id, start_time=start, duration_minutes=minutes, **kw
    )
    db.commit()
    return b.id


def _count_bookings(db) -> int:
    return db.execute(select(func.count()).select_from(Booking)).scalar_one()


def test_create_confirms_and_takes_slot(db, make_station, future_start):
    s = make_station(total=5, rate_cents=12000)
    bid = _book(db, s, future_start, minutes=30)
    b = load_booking(bid)
    assert b.status == "confirmed"
    assert b.payment_status == "completed"
    assert b.expired is False
    assert b.end_time == future_start + timedelta(minutes=30)
    assert b.total_cost_cents == 6000
    assert b.station_name == s.name
    assert b.qr_code == str(bid)
    assert b.slot_held is True
    assert available_slots(s.id) == 4


def test_cost_is_prorated_by_minute(db, make_station, future_start):
    s = make_station(rate_cents=10000)
    bid = _book(db, s, future_start, minutes=25)
    assert load_booking(bid).total_cost_cents == 4167


def test_short_duration_rejected_without_side_effects(db, make_station, future_start):
    s = make_station(total=5)
    with pytest.raises(ValidationError):
        lifecycle.create_booking(db, user_id=USER_1, station_id=s.id, start_time=future_start, duration_minutes=10)
    db.commit()
    assert _count_bookings(db) == 0
    assert available_slots(s.id) == 5


@pytest.mark.parametrize("start", [None, "", "tomorrow at noon", 12345])
def test_bad_start_time_rejected(db, make_station, start):
    s = make_station(total=5)
    with pytest.raises(ValidationError):
        lifecycle.create_booking(db, user_id=USER_1, station_id=s.id, start_time=start, duration_minutes=30)
    db.commit()
    assert available_slots(s.id) == 5


def test_aware_start_time_normalized_to_utc(db, make_station):
    s = make_station()
    ist = timezone(timedelta(hours=5, minutes=30))
    start = datetime(2031, 1, 1, 15, 30, tzinfo=ist)
    bid = _book(db, s, start.isoformat())
    assert load_booking(bid).start_time == datetime(2031, 1, 1, 10, 0)


def test_zulu_suffix_accepted():
    assert lifecycle.parse_start_time("2031-01-01T10:00:00Z") == datetime(2031, 1, 1, 10, 0)


def test_unknown_station(db, future_start):
    with pytest.raises(NotFoundError):
        lifecycle.create_booking(db, user_id=USER_1, station_id=uuid.uuid4(), start_time=future_start, duration_minutes=30)


def test_failed_payment_writes_nothing(db, make_station, future_start):
    s = make_station(total=5)
    with pytest.raises(PaymentFailedError):
        lifecycle.create_booking(
            db, user_id=USER_1, station_id=s.id, start_time=future_start, duration_minutes=30,
            payment_method="upi", payment_reference="FAIL",
        )
    db.commit()
    assert _count_bookings(db) == 0
    assert available_slots(s.id) == 5


def test_station_in_maintenance_not_bookable(db, make_station, future_start):
    s = make_station(status="maintenance")
    with pytest.raises(BookingStateError):
        _book(db, s, future_start)


def test_full_station_saturates_by_default(db, make_station, future_start):
    s = make_station(total=2, available=0)
    bid = _book(db, s, future_start)
    assert available_slots(s.id) == 0
    assert load_booking(bid).slot_held is False


def test_full_station_rejected_when_configured(db, make_station, future_start, monkeypatch):
    monkeypatch.setattr(settings, "REJECT_WHEN_FULL", True)
    s = make_station(total=2, available=0)
    with pytest.raises(NoSlotsAvailableError):
        lifecycle.create_booking(db, user_id=USER_1, station_id=s.id, start_time=future_start, duration_minutes=30)
    db.rollback()
    assert _count_bookings(db) == 0


def test_verify_marks_used_and_keeps_slot(db, make_station, future_start):
    s = make_station(total=5)
    bid = _book(db, s, future_start)
    b = lifecycle.verify_booking(db, bid, ADMIN_A)
    db.commit()
    assert b.status == "verified"
    assert b.expired is True
    assert b.verified_at is not None
    assert available_slots(s.id) == 4


def test_second_verify_is_already_verified(db, make_station, future_start):
    s = make_station(total=5)
    bid = _book(db, s, future_start)
    lifecycle.verify_booking(db, bid, ADMIN_A)
    db.commit()
    with pytest.raises(AlreadyVerifiedError):
        lifecycle.verify_booking(db, bid, ADMIN_A)
    db.rollback()
    assert available_slots(s.id) == 4


def test_verify_unknown_booking(db, make_station):
    s = make_station(total=5)
    with pytest.raises(NotFoundError):
        lifecycle.verify_booking(db, uuid.uuid4(), ADMIN_A)
    db.rollback()
    assert available_slots(s.id) == 5


def test_verify_by_other_admin_denied(db, make_station, future_start):
    s = make_station(owner_id=ADMIN_A)
    bid = _book(db, s, future_start)
    with pytest.raises(PermissionDeniedError):
        lifecycle.verify_booking(db, bid, ADMIN_B)
    db.rollback()
    b = load_booking(bid)
    assert b.status == "confirmed"
    assert b.expired is False


def test_verify_after_window_is_already_expired(db, make_station, future_start):
    s = make_station()
    bid = _book(db, s, future_start, minutes=30)
    with pytest.raises(AlreadyExpiredError):
        lifecycle.verify_booking(db, bid, ADMIN_A, now=future_start + timedelta(minutes=31))


def test_verify_after_sweep_is_already_expired(db, make_station, future_start):
    s = make_station()
    bid = _book(db, s, future_start, minutes=30)
    later = future_start + timedelta(minutes=45)
    assert lifecycle.expire_and_complete(db, bid, now=later) is True
    db.commit()
    with pytest.raises(AlreadyExpiredError):
        lifecycle.verify_booking(db, bid, ADMIN_A, now=later)


def test_expire_twice_releases_once(db, make_station, future_start):
    s = make_station(total=5)
    bid = _book(db, s, future_start, minutes=30)
    later = future_start + timedelta(minutes=30)
    assert lifecycle.expire_and_complete(db, bid, now=later) is True
    assert lifecycle.expire_and_complete(db, bid, now=later) is False
    db.commit()
    assert available_slots(s.id) == 5
    b = load_booking(bid)
    assert b.status == "completed"
    assert b.expired is True
    assert b.slot_released is True


def test_expire_before_end_is_noop(db, make_station, future_start):
    s = make_station(total=5)
    bid = _book(db, s, future_start, minutes=30)
    assert lifecycle.expire_and_complete(db, bid, now=future_start + timedelta(minutes=5)) is False
    db.commit()
    assert available_slots(s.id) == 4


def test_verify_then_expire_nets_zero(db, make_station, future_start):
    s = make_station(total=5)
    bid = _book(db, s, future_start, minutes=30)
    lifecycle.verify_booking(db, bid, ADMIN_A)
    db.commit()
    assert lifecycle.expire_and_complete(db, bid, now=future_start + timedelta(minutes=40)) is True
    db.commit()
    assert available_slots(s.id) == 5
    b = load_booking(bid)
    assert b.status == "verified"
    assert b.slot_released is True


def test_full_station_booking_never_inflates_counter(db, make_station, future_start):
    s = make_station(total=1)
    first = _book(db, s, future_start)
    second = _book(db, s, future_start, user=USER_2)
    assert available_slots(s.id) == 0
    later = future_start + timedelta(hours=1)
    assert lifecycle.expire_and_complete(db, second, now=later) is True
    db.commit()
    assert available_slots(s.id) == 0
    assert lifecycle.expire_and_complete(db, first, now=later) is True
    db.commit()
    assert available_slots(s.id) == 1


def test_expire_for_deleted_station_still_reconciles(db, make_station, future_start):
    s = make_station(total=5)
    bid = _book(db, s, future_start)
    db.delete(s)
    db.commit()
    assert lifecycle.expire_and_complete(db, bid, now=future_start + timedelta(hours=1)) is True
    db.commit()
    assert load_booking(bid).slot_released is True


def test_cancel_returns_slot_once(db, make_station, future_start):
    s = make_station(total=5)
    bid = _book(db, s, future_start)
    b = lifecycle.cancel_booking(db, bid, USER_1)
    db.commit()
    assert b.status == "cancelled"
    assert available_slots(s.id) == 5
    again = lifecycle.cancel_booking(db, bid, USER_1)
    db.commit()
    assert again.status == "cancelled"
    assert available_slots(s.id) == 5


def test_cancelled_booking_not_swept(db, make_station, future_start):
    s = make_station(total=5)
    bid = _book(db, s, future_start)
    lifecycle.cancel_booking(db, bid, USER_1)
    db.commit()
    assert lifecycle.expire_and_complete(db, bid, now=future_start + timedelta(hours=2)) is False
    db.commit()
    assert available_slots(s.id) == 5


def test_cancel_by_other_user_denied(db, make_station, future_start):
    s = make_station()
    bid = _book(db, s, future_start)
    with pytest.raises(PermissionDeniedError):
        lifecycle.cancel_booking(db, bid, USER_2)


def test_cancel_after_start_rejected(db, make_station, future_start):
    s = make_station()
    bid = _book(db, s, future_start)
    with pytest.raises(BookingStateError):
        lifecycle.cancel_booking(db, bid, USER_1, now=future_start + timedelta(minutes=1))


def test_cancel_verified_booking_rejected(db, make_station, future_start):
    s = make_station()
    bid = _book(db, s, future_start)
    lifecycle.verify_booking(db, bid, ADMIN_A)
    db.commit()
    with pytest.raises(AlreadyVerifiedError):
        lifecycle.cancel_booking(db, bid, USER_1)


def test_cancel_completed_booking_rejected(db, make_station, future_start):
    s = make_station(total=5)
    bid = _book(db, s, future_start)
    assert lifecycle.expire_and_complete(db, bid, now=future_start + timedelta(hours=1)) is True
    db.commit()
    # terminal status wins over the start-time check
    with pytest.raises(AlreadyExpiredError):
        lifecycle.cancel_booking(db, bid, USER_1, now=future_start - timedelta(minutes=5))
    assert available_slots(s.id) == 5


def test_storage_failure_is_wrapped(db, make_station, future_start, monkeypatch):
    s = make_station(total=5)

    def boom(*a, **kw):
        raise OperationalError("UPDATE stations", {}, Exception("database is locked"))

    monkeypatch.setattr(ledger, "decrement", boom)
    with pytest.raises(StorageError):
        lifecycle.create_booking(db, user_id=USER_1, station_id=s.id, start_time=future_start, duration_minutes=30)
    assert _count_bookings(db) == 0
    assert available_slots(s.id) == 5


def test_transition_table():
    assert lifecycle.can_transition("pending", "confirmed")
    assert lifecycle.can_transition("confirmed", "verified")
    assert not lifecycle.can_transition("cancelled", "confirmed")
    assert not lifecycle.can_transition("completed", "verified")


def test_display_state():
    now = datetime(2031, 1, 1, 12, 0)

    def b(status, expired=False, end=now + timedelta(minutes=30)):
        return Booking(status=status, expired=expired, end_time=end)

    assert lifecycle.display_state(b("confirmed"), now) == "confirmed"
    assert lifecycle.display_state(b("confirmed", end=now), now) == "expired"
    assert lifecycle.display_state(b("confirmed", expired=True), now) == "expired"
    assert lifecycle.display_state(b("verified", expired=True), now) == "verified & expired"
    assert lifecycle.display_state(b("verified"), now) == "verified"
    assert lifecycle.display_state(b("completed", expired=True), now) == "completed"
    assert lifecycle.display_state(b("cancelled"), now) == "cancelled"
