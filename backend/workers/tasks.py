import logging
from datetime import UTC, datetime

from sqlalchemy.exc import OperationalError

from app.application.services.subscription_projector import SubscriptionProjector
from app.application.services.webhook_publisher import PublishedEvent
from app.core.config import settings
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.db.session import SessionLocal
from app.infrastructure.logging.context import reset_stripe_event_id, set_stripe_event_id
from app.infrastructure.observability.metrics import measure_redis, record_projection
from workers.celery_app import celery_app

logger = logging.getLogger(__name__)

MAX_RETRY_DELAY_SECONDS = 600


def _compute_retry_delay_seconds(retries: int) -> int:
    base = max(1, settings.subscription_projector_retry_backoff_seconds)
    return min(base * (2 ** retries), MAX_RETRY_DELAY_SECONDS)


@celery_app.task(name="workers.tasks.worker_heartbeat")
def worker_heartbeat() -> dict:
    now = datetime.now(UTC).isoformat()
    with measure_redis("worker_heartbeat_set"):
        get_redis_client().set(
            settings.worker_heartbeat_key,
            now,
            ex=max(15, settings.worker_heartbeat_ttl_seconds),
        )
    return {"heartbeat_at": now}


@celery_app.task(
    bind=True,
    name="workers.tasks.project_subscription_event",
    max_retries=settings.subscription_projector_max_retries,
    acks_late=True,
)
def project_subscription_event(self, event: dict) -> dict:
    """Apply one published webhook event to the subscriptions table.

    Lost database connections are retried with exponential backoff; any
    other failure surfaces in the worker log and the message is dropped.
    """
    published = PublishedEvent.model_validate(event)
    token = set_stripe_event_id(published.stripe_event_id)
    try:
        try:
            with SessionLocal() as db:
                action = SubscriptionProjector(db).apply(published)
                db.commit()
        except OperationalError as exc:
            countdown = _compute_retry_delay_seconds(self.request.retries)
            logger.warning(
                "subscription_projection_retry event_type=%s attempt=%s countdown=%s",
                published.event_type,
                self.request.retries + 1,
                countdown,
            )
            raise self.retry(exc=exc, countdown=countdown)

        record_projection(action)
        logger.info("subscription_projection_applied event_type=%s action=%s", published.event_type, action)
        return {"status": action, "stripe_event_id": published.stripe_event_id}
    finally:
        reset_stripe_event_id(token)
