from __future__ import annotations

import os
from celery import Celery

REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0")

celery_app = Celery(
    "roster_workers",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=["apps.workers.tasks"],
)

celery_app.conf.update(
    task_track_started=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=int(os.getenv("CELERY_RESULT_EXPIRES_S", "86400")),  # 1 day
    beat_schedule={
        "evict-expired-sessions": {
            "task": "roster.evict_expired_sessions",
            "schedule": float(os.getenv("ROSTER_EVICT_INTERVAL_S", "3600")),
        },
    },
)
celery_app.conf.broker_connection_retry_on_startup = True
