"""
Celery Application — background and periodic work for the tour finance service.

Beat schedule:
  resync_booking_statuses — hourly at STATUS_RESYNC_MINUTE past the hour;
  re-drives settlement flags and the booking status resolver for every booking
"""
import os
from celery import Celery
from celery.schedules import crontab
from tour_finance.config import STATUS_RESYNC_MINUTE

BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")

celery_app = Celery(
    "tour_finance",
    broker=BROKER_URL,
    backend=RESULT_BACKEND,
    include=["tour_finance.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Asia/Makassar",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_soft_time_limit=300,   # 5 minutes soft limit
    task_time_limit=600,        # 10 minutes hard limit
    result_expires=3600,        # Results expire after 1 hour
    # ── Beat schedule ────────────────────────────────────────────────────────
    beat_schedule={
        "resync-booking-statuses-hourly": {
            "task": "tasks.resync_booking_statuses",
            "schedule": crontab(minute=STATUS_RESYNC_MINUTE),
            "options": {"expires": 3000},
        },
    },
)
