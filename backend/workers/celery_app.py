from celery import Celery
from celery.schedules import schedule
from kombu import Queue

from app.core.config import settings

celery_app = Celery(
    "billing_webhooks",
    broker=settings.cache_redis_url,
    backend=settings.cache_redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue=settings.webhook_events_queue,
    task_queues=(
        Queue(settings.webhook_events_queue),
        Queue("scheduler"),
    ),
    task_routes={
        "workers.tasks.project_subscription_event": {"queue": settings.webhook_events_queue},
        "workers.tasks.worker_heartbeat": {"queue": "scheduler"},
    },
    # At-least-once: a message is only acked once the projection committed or finally failed.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_ignore_result=True,
    beat_schedule={
        "worker-heartbeat-every-15s": {
            "task": "workers.tasks.worker_heartbeat",
            "schedule": schedule(15.0),
            "options": {"queue": "scheduler"},
        },
    },
)

celery_app.autodiscover_tasks(["workers"])
