import asyncio
import logging

from app.application.services.webhook_publisher import PublishedEvent

logger = logging.getLogger(__name__)


class CeleryWebhookEventTopic:
    """Hands published events to the Celery worker running the subscription projector.

    The consuming task acks late, so delivery is at-least-once.
    """

    def __init__(self, *, queue: str) -> None:
        self._queue = queue

    async def publish(self, event: PublishedEvent) -> None:
        from workers.tasks import project_subscription_event  # local import to avoid import cycle

        # Broker I/O is blocking; keep it off the event loop.
        await asyncio.to_thread(
            project_subscription_event.apply_async,
            kwargs={"event": event.model_dump(mode="json")},
            queue=self._queue,
        )
        logger.info("project_subscription_event_enqueued queue=%s event_type=%s", self._queue, event.event_type)
