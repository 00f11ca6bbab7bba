"""Celery application, broker and result backend both backed by Redis.

Workers run as a separate process from the API server; beat schedules the
periodic inventory sweep.

Task lifecycle states stored in Redis:
  PENDING  -> task dispatched, not yet picked up by a worker
  STARTED  -> worker has begun execution  (task_track_started=True)
  SUCCESS  -> task finished without error
  FAILURE  -> task raised an unhandled exception
  RETRY    -> task failed and is waiting for its next retry attempt
"""

from celery import Celery

from libris.core.config import settings

celery_app = Celery(
    "libris",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["libris.infrastructure.tasks.reconciliation_tasks"],
)

celery_app.conf.update(
    # Serialisation
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # State tracking
    task_track_started=True,
    result_expires=86400,           # keep results in Redis for 24 h
    # Reliability
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    beat_schedule={
        "reconcile-inventory": {
            "task": "inventory.reconcile",
            "schedule": float(settings.reconciliation_interval_seconds),
        },
    },
)
