from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.application.services.webhook_errors import StorageError
from app.application.services.webhook_normalizer import NormalizedEvent
from app.domain.models.webhook_event import WebhookEvent
from app.infrastructure.db.dialect import dialect_insert

logger = logging.getLogger(__name__)


def _row_values(event: NormalizedEvent) -> dict:
    ids = event.ids
    details = event.details
    return {
        "stripe_event_id": event.stripe_event_id,
        "event_type": event.event_type,
        "api_version": event.api_version,
        "livemode": event.livemode,
        "customer_id": ids.customer_id,
        "subscription_id": ids.subscription_id,
        "invoice_id": ids.invoice_id,
        "payment_intent_id": ids.payment_intent_id,
        "charge_id": ids.charge_id,
        "user_id": event.user_id,
        "amount": details.amount,
        "currency": details.currency,
        "subscription_status": details.status,
        "plan_id": details.plan_id,
        "subscription_interval": details.interval,
        "current_period_start": details.current_period_start,
        "current_period_end": details.current_period_end,
        "cancel_at_period_end": details.cancel_at_period_end,
        "canceled_at": details.canceled_at,
        "payload": event.payload,
        "processed": False,
    }


class WebhookEventStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(self, event: NormalizedEvent) -> bool:
        """Insert the event once; a redelivered ``stripe_event_id`` is a no-op.

        Returns ``True`` when a new row was written.
        """
        try:
            async with self._session_factory() as db:
                statement = (
                    dialect_insert(db.get_bind().dialect.name, WebhookEvent)
                    .values(**_row_values(event))
                    .on_conflict_do_nothing(index_elements=["stripe_event_id"])
                )
                result = await db.execute(statement)
                await db.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to store webhook event {event.stripe_event_id}") from exc

        inserted = result.rowcount == 1
        if inserted:
            logger.info("webhook_event_stored event_type=%s user_id=%s", event.event_type, event.user_id)
        else:
            logger.info("webhook_event_duplicate event_type=%s", event.event_type)
        return inserted
