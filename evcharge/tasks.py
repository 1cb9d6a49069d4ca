from __future__ import annotations

from .celery_app import celery_app
from .sweeper import run_sweep_once


@celery_app.task(name="evcharge.tasks.sweep_expired_bookings")
def sweep_expired_bookings(limit: int | None = None) -> dict:
    """Run one expiry sweep. Returns the sweep counters for the result log."""
    return run_sweep_once(limit=limit).as_dict()
