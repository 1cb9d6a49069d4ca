"""Slot ledger: the only writer of ``stations.available_slots``.

Both operations are a single conditional UPDATE evaluated by the database, so
concurrent callers never lose an update and the counter never leaves
``0..total_slots``. Saturation is silent; the return value tells the caller
whether the counter actually moved.
"""
import json
import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .errors import NotFoundError
from .models import Station, as_uuid


logger = logging.getLogger("evcharge.ledger")


def _station_exists(db: Session, station_id) -> bool:
    return db.execute(select(Station.id).where(Station.id == station_id)).first() is not None


def _refresh_cached(db: Session, station_id) -> None:
    # the UPDATE bypassed the ORM, so a loaded Station would show a stale count
    cached = db.identity_map.get(db.identity_key(Station, station_id))
    if cached is not None:
        db.expire(cached, ["available_slots"])


def decrement(db: Session, station_id) -> bool:
    """Take one slot. Returns False when the station was already at zero."""
    sid = as_uuid(station_id)
    if sid is None:
        raise NotFoundError("Station not found")
    res = db.execute(
        update(Station)
        .where(Station.id == sid, Station.available_slots > 0)
        .values(available_slots=Station.available_slots - 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 1:
        _refresh_cached(db, sid)
        return True
    if not _station_exists(db, sid):
        raise NotFoundError("Station not found")
    logger.info(json.dumps({"event": "ledger_saturated", "op": "decrement", "station_id": str(sid)}))
    return False


def increment(db: Session, station_id, *, missing_ok: bool = False) -> bool:
    """Give one slot back. Returns False when already at ``total_slots``.

    With ``missing_ok`` a deleted station is treated as nothing to release.
    """
    sid = as_uuid(station_id)
    if sid is None:
        raise NotFoundError("Station not found")
    res = db.execute(
        update(Station)
        .where(Station.id == sid, Station.available_slots < Station.total_slots)
        .values(available_slots=Station.available_slots + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 1:
        _refresh_cached(db, sid)
        return True
    if not _station_exists(db, sid):
        if missing_ok:
            logger.warning(json.dumps({"event": "ledger_station_missing", "op": "increment", "station_id": str(sid)}))
            return False
        raise NotFoundError("Station not found")
    logger.info(json.dumps({"event": "ledger_saturated", "op": "increment", "station_id": str(sid)}))
    return False


def available(db: Session, station_id) -> int:
    sid = as_uuid(station_id)
    value = db.execute(select(Station.available_slots).where(Station.id == sid)).scalar_one_or_none()
    if value is None:
        raise NotFoundError("Station not found")
    return int(value)
