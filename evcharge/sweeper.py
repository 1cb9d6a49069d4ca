"""Expiry sweep.

Finds bookings whose window has closed but whose slot has not been given back
and reconciles each one in its own transaction. Overlapping sweeps are safe:
``expire_and_complete`` lets only one of them release a given booking.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from prometheus_client import Counter, Histogram
from sqlalchemy import and_, or_, select

from .config import settings
from .database import SessionLocal, session_scope
from .lifecycle import RECONCILABLE_STATUSES, expire_and_complete
from .models import Booking, utcnow


logger = logging.getLogger("evcharge.sweeper")

SWEEP_BOOKINGS = Counter(
    "evcharge_sweep_bookings_total",
    "Bookings seen by the expiry sweep, by outcome",
    ["outcome"],
)
SWEEP_DURATION = Histogram(
    "evcharge_sweep_duration_seconds",
    "Wall time of one expiry sweep",
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30, 60),
)


@dataclass
class SweepResult:
    scanned: int = 0
    reconciled: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def _due_page(db, now: datetime, limit: int, after: Optional[tuple] = None) -> list:
    q = select(Booking.id, Booking.end_time).where(
        Booking.status.in_(RECONCILABLE_STATUSES),
        Booking.slot_released.is_(False),
        Booking.end_time <= now,
    )
    if after is not None:
        end_time, booking_id = after
        q = q.where(or_(Booking.end_time > end_time, and_(Booking.end_time == end_time, Booking.id > booking_id)))
    return list(db.execute(q.order_by(Booking.end_time, Booking.id).limit(limit)).all())


def find_due(db, now: datetime, limit: int, after: Optional[tuple] = None) -> list:
    """Ids of due bookings, oldest end time first.

    ``after`` is an ``(end_time, id)`` cursor; only rows strictly past it are
    returned, so a booking that keeps failing does not hold up the ones behind it.
    """
    return [row.id for row in _due_page(db, now, limit, after)]


def run_sweep_once(
    session_factory=None,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
    max_pages: Optional[int] = None,
) -> SweepResult:
    factory = session_factory or SessionLocal
    now = now or utcnow()
    limit = limit or settings.SWEEP_BATCH_LIMIT
    max_pages = max_pages or settings.SWEEP_MAX_PAGES
    started = time.perf_counter()
    result = SweepResult()

    cursor = None
    for _ in range(max_pages):
        with session_scope(factory) as db:
            page = _due_page(db, now, limit, cursor)
        if not page:
            break
        result.scanned += len(page)
        cursor = (page[-1].end_time, page[-1].id)

        for booking_id, _end in page:
            try:
                with session_scope(factory) as db:
                    done = expire_and_complete(db, booking_id, now=now)
            except Exception as e:
                # left unreleased; the next tick picks it up again
                result.failed += 1
                SWEEP_BOOKINGS.labels("failed").inc()
                logger.exception(json.dumps({"event": "sweep_booking_failed", "booking_id": str(booking_id), "error": str(e)}))
                continue
            if done:
                result.reconciled += 1
                SWEEP_BOOKINGS.labels("reconciled").inc()
            else:
                result.skipped += 1
                SWEEP_BOOKINGS.labels("skipped").inc()

        if len(page) < limit:
            break

    SWEEP_DURATION.observe(time.perf_counter() - started)
    logger.info(json.dumps({"event": "sweep_finished", "now": now.isoformat(), **result.as_dict()}))
    return result
