from celery import Celery
from datetime import timedelta

from .config import settings


celery_app = Celery(
    "evcharge",
    broker=settings.CELERY_BROKER_URL,
    include=["evcharge.tasks"],
)

celery_app.conf.update(
    timezone="UTC",
    task_default_queue="evcharge",
    task_acks_late=True,
    task_ignore_result=True,
)

# Expiry sweep; SWEEP_INTERVAL_SECS=0 leaves scheduling to cron (evcharge-sweep)
if settings.SWEEP_INTERVAL_SECS > 0:
    celery_app.conf.beat_schedule = {
        "sweep-expired-bookings": {
            "task": "evcharge.tasks.sweep_expired_bookings",
            "schedule": timedelta(seconds=settings.SWEEP_INTERVAL_SECS),
            "args": [settings.SWEEP_BATCH_LIMIT],
            # a tick that sat in the queue longer than one interval is superseded by the next
            "options": {"expires": settings.SWEEP_INTERVAL_SECS},
        }
    }
