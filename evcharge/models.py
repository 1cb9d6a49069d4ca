import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, Integer, DateTime, Boolean, Float, Index, CheckConstraint, Uuid
)
from sqlalchemy.orm import declarative_base


Base = declarative_base()


def default_uuid():
    return uuid.uuid4()


def as_uuid(value):
    """Coerce an id from a path, token or QR payload; None when it is not a UUID."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (ValueError, AttributeError, TypeError):
        return None


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


STATION_STATUSES = ("operational", "maintenance", "offline")

BOOKING_PENDING = "pending"
BOOKING_CONFIRMED = "confirmed"
BOOKING_VERIFIED = "verified"
BOOKING_COMPLETED = "completed"
BOOKING_CANCELLED = "cancelled"
BOOKING_STATUSES = (
    BOOKING_PENDING,
    BOOKING_CONFIRMED,
    BOOKING_VERIFIED,
    BOOKING_COMPLETED,
    BOOKING_CANCELLED,
)
PAYMENT_STATUSES = ("pending", "completed", "failed")


class Station(Base):
    __tablename__ = "stations"
    __table_args__ = (
        CheckConstraint("total_slots > 0", name="ck_stations_total_positive"),
        CheckConstraint(
            "available_slots >= 0 AND available_slots <= total_slots",
            name="ck_stations_available_bounds",
        ),
        Index("ix_stations_owner", "owner_id"),
        Index("ix_stations_status", "status"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    name = Column(String(128), nullable=False)
    address = Column(String(256), nullable=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    total_slots = Column(Integer, nullable=False)
    # only evcharge.ledger writes this column
    available_slots = Column(Integer, nullable=False)
    rate_per_hour_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(8), nullable=False, default="INR")
    open_time = Column(String(5), nullable=False, default="09:00")
    close_time = Column(String(5), nullable=False, default="21:00")
    status = Column(String(16), nullable=False, default="operational")  # operational|maintenance|offline
    owner_id = Column(String(64), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_bookings_duration_positive"),
        Index("ix_bookings_user", "user_id"),
        Index("ix_bookings_station", "station_id"),
        Index("ix_bookings_sweep", "status", "slot_released", "end_time"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=default_uuid)
    user_id = Column(String(64), nullable=False)
    # no FK: a station can be deleted while its bookings remain
    station_id = Column(Uuid(as_uuid=True), nullable=False)
    station_name = Column(String(128), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    rate_per_hour_cents = Column(Integer, nullable=False)
    total_cost_cents = Column(Integer, nullable=False)
    currency = Column(String(8), nullable=False, default="INR")
    status = Column(String(16), nullable=False, default=BOOKING_PENDING)  # pending|confirmed|verified|completed|cancelled
    payment_status = Column(String(16), nullable=False, default="pending")  # pending|completed|failed
    payment_method = Column(String(16), nullable=True)  # card|upi
    expired = Column(Boolean, nullable=False, default=False)
    # whether the creation-time decrement actually took a slot
    slot_held = Column(Boolean, nullable=False, default=False)
    slot_released = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime, nullable=True)
    verified_by = Column(String(64), nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def qr_code(self) -> str:
        return str(self.id)

    @property
    def expires_at(self) -> datetime:
        return self.end_time
