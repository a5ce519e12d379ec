"""
Celery app for the receipt outbox worker.

Beat drains the outbox every OUTBOX_POLL_INTERVAL_SECONDS and prunes
delivered messages once a night. All receipt tasks share one queue.
"""
from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "cod_ledger",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue=settings.RECEIPTS_QUEUE,
    task_routes={"app.workers.tasks.*": {"queue": settings.RECEIPTS_QUEUE}},
    # One batch posts at most OUTBOX_BATCH_SIZE receipts, each bounded by the HTTP timeout
    task_time_limit=int(settings.OUTBOX_BATCH_SIZE * settings.RECEIPT_SERVICE_TIMEOUT_SECONDS) + 60,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
)

celery_app.conf.beat_schedule = {
    "drain-receipt-outbox": {
        "task": "app.workers.tasks.process_outbox_messages",
        "schedule": settings.OUTBOX_POLL_INTERVAL_SECONDS,
        "options": {"expires": settings.OUTBOX_POLL_INTERVAL_SECONDS},
    },
    "prune-delivered-receipts": {
        "task": "app.workers.tasks.cleanup_old_messages",
        "schedule": crontab(hour=3, minute=30),
        "kwargs": {"days": settings.OUTBOX_RETENTION_DAYS},
    },
}
