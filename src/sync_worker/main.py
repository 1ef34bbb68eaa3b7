"""Celery application for sync worker."""

from celery import Celery
from celery.schedules import crontab

from order_sync_service.config import get_settings

settings = get_settings()

# Create Celery app
app = Celery(
    "sync_worker",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=[
        "sync_worker.tasks.sync_orders",
        "sync_worker.tasks.normalize_orders",
    ],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,  # 1 hour
    task_soft_time_limit=3300,  # 55 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="sync",
    task_routes={
        "sync_worker.tasks.*": {"queue": "sync"},
    },
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = {
    # Ingest orders for every active shop every hour
    "ingest-orders": {
        "task": "sync_worker.tasks.sync_orders.ingest_all_shops",
        "schedule": crontab(minute=0),
    },
    # Normalize stored raw orders every 5 minutes
    "normalize-orders": {
        "task": "sync_worker.tasks.normalize_orders.normalize_all_tenants",
        "schedule": crontab(minute=f"*/{settings.normalization_interval_minutes}"),
    },
}


def run() -> None:
    """Run the Celery worker."""
    app.worker_main(["worker", "--loglevel=info", "-Q", "sync"])


if __name__ == "__main__":
    run()
