from math import radians, sin, cos, asin, sqrt
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..auth import CurrentUser, get_db, require_admin
from ..config import settings
from ..errors import NotFoundError, PermissionDeniedError
from ..lifecycle import RECONCILABLE_STATUSES
from ..models import Booking, Station, as_uuid, utcnow
from ..schemas import (
    BookingsListOut,
    OperatingHoursOut,
    RatesOut,
    StationCreateIn,
    StationOut,
    StationsListOut,
    StationSummaryOut,
    StationUpdateIn,
)
from .bookings import _to_booking_out


router = APIRouter(prefix="/stations", tags=["stations"])


def _haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    R = 6371.0
    d_lat = radians(lat2 - lat1)
    d_lon = radians(lon2 - lon1)
    a = sin(d_lat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(d_lon / 2) ** 2
    return R * 2 * asin(sqrt(a))


def _to_station_out(s: Station, distance_km: Optional[float] = None) -> StationOut:
    return StationOut(
        id=str(s.id),
        name=s.name,
        address=s.address,
        lat=s.lat,
        lng=s.lng,
        total_slots=s.total_slots,
        available_slots=s.available_slots,
        rates=RatesOut(per_hour_cents=s.rate_per_hour_cents, currency=s.currency),
        operating_hours=OperatingHoursOut(open=s.open_time, close=s.close_time),
        status=s.status,
        created_by=s.owner_id,
        created_at=s.created_at,
        distance_m=int(distance_km * 1000) if distance_km is not None else None,
    )


def _get_station(db: Session, station_id: str) -> Station:
    sid = as_uuid(station_id)
    s = db.get(Station, sid) if sid is not None else None
    if s is None:
        raise NotFoundError("Station not found")
    return s


def _owned_station(db: Session, station_id: str, admin: CurrentUser) -> Station:
    s = _get_station(db, station_id)
    if s.owner_id != admin.id:
        raise PermissionDeniedError("Not your station")
    return s


@router.post("", response_model=StationOut)
def create_station(payload: StationCreateIn, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    s = Station(
        name=payload.name.strip(),
        address=payload.address,
        lat=payload.lat,
        lng=payload.lng,
        total_slots=payload.total_slots,
        available_slots=payload.total_slots,
        rate_per_hour_cents=payload.rate_per_hour_cents,
        currency=(payload.currency or settings.DEFAULT_CURRENCY).upper(),
        open_time=payload.open_time,
        close_time=payload.close_time,
        status=payload.status,
        owner_id=admin.id,
    )
    db.add(s)
    db.flush()
    return _to_station_out(s)


@router.get("", response_model=StationsListOut)
def list_stations(
    status_filter: Optional[str] = Query(default=None, alias="status", pattern="^(operational|maintenance|offline)$"),
    db: Session = Depends(get_db),
):
    q = select(Station).order_by(Station.name)
    if status_filter:
        q = q.where(Station.status == status_filter)
    return StationsListOut(stations=[_to_station_out(s) for s in db.execute(q).scalars().all()])


@router.get("/near", response_model=StationsListOut)
def stations_near(
    lat: float = Query(ge=-90, le=90),
    lng: float = Query(ge=-180, le=180),
    radius_km: float = Query(default=10.0, gt=0, le=500),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    hits = []
    for s in db.execute(select(Station)).scalars().all():
        d = _haversine_km(lat, lng, s.lat, s.lng)
        if d <= radius_km:
            hits.append((d, s))
    hits.sort(key=lambda pair: pair[0])
    return StationsListOut(stations=[_to_station_out(s, d) for d, s in hits[:limit]])


@router.get("/mine", response_model=StationsListOut)
def my_stations(admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    rows = db.execute(
        select(Station).where(Station.owner_id == admin.id).order_by(Station.created_at.desc())
    ).scalars().all()
    return StationsListOut(stations=[_to_station_out(s) for s in rows])


@router.get("/mine/summary", response_model=StationSummaryOut)
def my_stations_summary(admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    rows = db.execute(select(Station).where(Station.owner_id == admin.id)).scalars().all()
    ids = [s.id for s in rows]
    active = 0
    if ids:
        # slot still held: confirmed or verified and not yet released by the sweep
        active = db.execute(
            select(func.count(Booking.id)).where(
                Booking.station_id.in_(ids),
                Booking.status.in_(RECONCILABLE_STATUSES),
                Booking.slot_released.is_(False),
            )
        ).scalar_one()
    return StationSummaryOut(
        total_stations=len(rows),
        active_bookings=int(active),
        available_slots=sum(s.available_slots for s in rows),
        maintenance_stations=sum(1 for s in rows if s.status == "maintenance"),
    )


@router.get("/mine/bookings", response_model=BookingsListOut)
def my_stations_bookings(admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    ids = db.execute(select(Station.id).where(Station.owner_id == admin.id)).scalars().all()
    if not ids:
        return BookingsListOut(bookings=[])
    rows = db.execute(
        select(Booking).where(Booking.station_id.in_(ids)).order_by(Booking.start_time.desc())
    ).scalars().all()
    now = utcnow()
    return BookingsListOut(bookings=[_to_booking_out(b, now) for b in rows])


@router.get("/{station_id}", response_model=StationOut)
def get_station(station_id: str, db: Session = Depends(get_db)):
    return _to_station_out(_get_station(db, station_id))


@router.patch("/{station_id}", response_model=StationOut)
def update_station(
    station_id: str,
    payload: StationUpdateIn,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    s = _owned_station(db, station_id, admin)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in changes:
        changes["name"] = changes["name"].strip()
    if "currency" in changes:
        changes["currency"] = changes["currency"].upper()
    for field, value in changes.items():
        setattr(s, field, value)
    db.flush()
    return _to_station_out(s)


@router.delete("/{station_id}")
def delete_station(station_id: str, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    s = _owned_station(db, station_id, admin)
    # bookings are kept as they are
    db.delete(s)
    db.flush()
    return {"detail": "deleted"}


@router.get("/{station_id}/bookings", response_model=BookingsListOut)
def station_bookings(station_id: str, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    s = _owned_station(db, station_id, admin)
    rows = db.execute(
        select(Booking).where(Booking.station_id == s.id).order_by(Booking.start_time.desc())
    ).scalars().all()
    now = utcnow()
    return BookingsListOut(bookings=[_to_booking_out(b, now) for b in rows])
