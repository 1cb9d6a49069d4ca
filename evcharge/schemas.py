from pydantic import AfterValidator, BaseModel, Field
from typing import Annotated, Optional, List, Literal
from datetime import datetime, timezone


_HHMM = r"^([01]\d|2[0-3]):[0-5]\d$"


def _as_utc(dt: datetime) -> datetime:
    # stored values are naive UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


UTCDateTime = Annotated[datetime, AfterValidator(_as_utc)]


class RatesOut(BaseModel):
    per_hour_cents: int
    currency: str


class OperatingHoursOut(BaseModel):
    open: str
    close: str


class StationCreateIn(BaseModel):
    name: str = Field(min_length=2, max_length=128)
    address: Optional[str] = Field(default=None, max_length=256)
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    total_slots: int = Field(ge=1, le=1000)
    rate_per_hour_cents: int = Field(ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=8)
    open_time: str = Field(default="09:00", pattern=_HHMM)
    close_time: str = Field(default="21:00", pattern=_HHMM)
    status: Literal["operational", "maintenance", "offline"] = "operational"


class StationUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=128)
    address: Optional[str] = Field(default=None, max_length=256)
    rate_per_hour_cents: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=8)
    open_time: Optional[str] = Field(default=None, pattern=_HHMM)
    close_time: Optional[str] = Field(default=None, pattern=_HHMM)
    status: Optional[Literal["operational", "maintenance", "offline"]] = None


class StationOut(BaseModel):
    id: str
    name: str
    address: Optional[str] = None
    lat: float
    lng: float
    total_slots: int
    available_slots: int
    rates: RatesOut
    operating_hours: OperatingHoursOut
    status: str
    created_by: str
    created_at: UTCDateTime
    distance_m: Optional[int] = None


class StationsListOut(BaseModel):
    stations: List[StationOut]


class StationSummaryOut(BaseModel):
    total_stations: int
    active_bookings: int
    available_slots: int
    maintenance_stations: int


class CreateBookingIn(BaseModel):
    station_id: str
    start_time: str
    duration_minutes: int
    payment_method: Optional[Literal["card", "upi"]] = None
    payment_reference: Optional[str] = Field(default=None, max_length=128)


class BookingOut(BaseModel):
    id: str
    user_id: str
    station_id: str
    station_name: str
    start_time: UTCDateTime
    end_time: UTCDateTime
    duration_minutes: int
    total_cost_cents: int
    currency: str
    status: str
    payment_status: str
    expired: bool
    display_state: str
    qr_code: str
    expires_at: UTCDateTime
    verified_at: Optional[UTCDateTime] = None
    created_at: UTCDateTime


class BookingsListOut(BaseModel):
    bookings: List[BookingOut]


class TicketOut(BaseModel):
    booking_id: str
    qr_text: str
    qr_envelope: str


class VerifyIn(BaseModel):
    payload: str = Field(max_length=2048)


class SweepOut(BaseModel):
    scanned: int
    reconciled: int
    skipped: int
    failed: int
