from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID

from pydantic import BaseModel, Field

from app.application.services.webhook_errors import PublishFailure
from app.application.services.webhook_normalizer import NormalizedEvent
from app.infrastructure.observability.metrics import (
    WEBHOOK_EVENTS_PUBLISHED_TOTAL,
    WEBHOOK_PUBLISH_FAILURES_TOTAL,
)

logger = logging.getLogger(__name__)


class PublishedEvent(BaseModel):
    stripe_event_id: str
    event_type: str
    user_id: UUID | None = None
    customer_id: str | None = None
    subscription_id: str | None = None
    subscription_status: str | None = None
    amount: int | None = None
    currency: str | None = None
    plan_id: str | None = None
    interval: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    payload: dict = Field(default_factory=dict)

    @classmethod
    def from_normalized(cls, event: NormalizedEvent) -> PublishedEvent:
        details = event.details
        return cls(
            stripe_event_id=event.stripe_event_id,
            event_type=event.event_type,
            user_id=event.user_id,
            customer_id=event.ids.customer_id,
            subscription_id=event.ids.subscription_id,
            subscription_status=details.status,
            amount=details.amount,
            currency=details.currency,
            plan_id=details.plan_id,
            interval=details.interval,
            current_period_start=details.current_period_start,
            current_period_end=details.current_period_end,
            cancel_at_period_end=details.cancel_at_period_end,
            canceled_at=details.canceled_at,
            payload=event.payload,
        )


class WebhookEventTopic(Protocol):
    async def publish(self, event: PublishedEvent) -> None: ...


@dataclass(frozen=True)
class PublishResult:
    status: str
    error: str | None = None

    @property
    def published(self) -> bool:
        return self.status == "published"


def is_publish_relevant(event_type: str) -> bool:
    # "customer.subscription" is covered by "subscription"; kept so a provider rename cannot drop it silently.
    return (
        "subscription" in event_type
        or "invoice" in event_type
        or "customer.subscription" in event_type
    )


class WebhookEventPublisher:
    """Best-effort fan-out of stored events to the subscription projection queue.

    The stored row is the source of truth, so a failed publish is logged and
    reported in the returned ``PublishResult`` but never raised.
    """

    def __init__(self, topic: WebhookEventTopic) -> None:
        self._topic = topic

    async def publish_if_relevant(self, event: NormalizedEvent) -> PublishResult:
        if not is_publish_relevant(event.event_type):
            return PublishResult(status="skipped")

        try:
            await self._topic.publish(PublishedEvent.from_normalized(event))
        except Exception as exc:
            failure = PublishFailure(f"Failed to publish {event.event_type}: {exc}")
            WEBHOOK_PUBLISH_FAILURES_TOTAL.inc()
            logger.error("webhook_publish_failed event_type=%s error=%s", event.event_type, exc, exc_info=True)
            return PublishResult(status="failed", error=str(failure))

        WEBHOOK_EVENTS_PUBLISHED_TOTAL.inc()
        logger.info(
            "webhook_event_published event_type=%s subscription_id=%s",
            event.event_type,
            event.ids.subscription_id,
        )
        return PublishResult(status="published")
