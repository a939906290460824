from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from app.application.services.user_resolver import UserResolver
from app.application.services.webhook_event_store import WebhookEventStore
from app.application.services.webhook_normalizer import normalize_event
from app.application.services.webhook_publisher import PublishResult, WebhookEventPublisher
from app.infrastructure.logging.context import reset_stripe_event_id, set_stripe_event_id
from app.infrastructure.observability.metrics import (
    WEBHOOK_EVENTS_DUPLICATE_TOTAL,
    WEBHOOK_EVENTS_RECEIVED_TOTAL,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestionOutcome:
    event_type: str
    payload_style: str
    stored: bool
    publish: PublishResult

    def as_response(self) -> dict:
        return {
            "received": True,
            "event_type": self.event_type,
            "payload_style": self.payload_style,
        }


class WebhookIngestionService:
    """Normalize, resolve, store and publish one verified Stripe event.

    Steps run strictly in order. A storage failure propagates (the caller
    answers 500 and Stripe redelivers); nothing is published in that case.
    """

    def __init__(
        self,
        *,
        user_resolver: UserResolver,
        event_store: WebhookEventStore,
        publisher: WebhookEventPublisher,
    ) -> None:
        self._user_resolver = user_resolver
        self._event_store = event_store
        self._publisher = publisher

    async def ingest(self, event: dict) -> IngestionOutcome:
        token = set_stripe_event_id(str(event.get("id") or ""))
        try:
            normalized = normalize_event(event)
            WEBHOOK_EVENTS_RECEIVED_TOTAL.labels(payload_style=normalized.payload_style).inc()
            logger.info(
                "webhook_event_received event_type=%s payload_style=%s",
                normalized.event_type,
                normalized.payload_style,
            )

            user_id = await self._user_resolver.resolve(normalized.ids.customer_id)
            normalized = replace(normalized, user_id=user_id)

            stored = await self._event_store.save(normalized)
            if not stored:
                WEBHOOK_EVENTS_DUPLICATE_TOTAL.inc()

            # Publish outcome is informational; failures were already logged by the publisher.
            publish_result = await self._publisher.publish_if_relevant(normalized)

            return IngestionOutcome(
                event_type=normalized.event_type,
                payload_style=normalized.payload_style,
                stored=stored,
                publish=publish_result,
            )
        finally:
            reset_stripe_event_id(token)
