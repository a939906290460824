from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.application.services.webhook_publisher import PublishedEvent
from app.domain.models.subscription import Subscription
from app.infrastructure.db.dialect import dialect_insert

logger = logging.getLogger(__name__)

SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
UPSERT_EVENT_TYPES = frozenset({SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED})

DEFAULT_STATUS = "active"
CANCELED_STATUS = "canceled"

# Overwritten on every created/updated delivery; user and customer stay as first recorded.
MUTABLE_COLUMNS = (
    "status",
    "plan_id",
    "amount",
    "currency",
    "interval",
    "current_period_start",
    "current_period_end",
    "cancel_at_period_end",
    "canceled_at",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SubscriptionProjector:
    """Applies published webhook events to the ``subscriptions`` read model.

    Each event becomes one statement. Concurrent deliveries for the same
    subscription are serialized by the database's ``ON CONFLICT`` handling,
    and the latest delivery wins regardless of Stripe's event timestamps.
    The caller owns the transaction.
    """

    def __init__(self, db: Session, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._db = db
        self._clock = clock

    def apply(self, event: PublishedEvent) -> str:
        if not event.subscription_id or event.user_id is None:
            logger.info(
                "subscription_projection_skipped event_type=%s subscription_id=%s user_id=%s",
                event.event_type,
                event.subscription_id,
                event.user_id,
            )
            return "skipped"

        if event.event_type in UPSERT_EVENT_TYPES:
            self._upsert(event)
            return "upserted"
        if event.event_type == SUBSCRIPTION_DELETED:
            self._cancel(event)
            return "canceled"
        return "ignored"

    def _upsert(self, event: PublishedEvent) -> None:
        insert_statement = dialect_insert(self._db.get_bind().dialect.name, Subscription).values(
            user_id=event.user_id,
            stripe_subscription_id=event.subscription_id,
            stripe_customer_id=event.customer_id,
            status=event.subscription_status or DEFAULT_STATUS,
            plan_id=event.plan_id,
            amount=event.amount,
            currency=event.currency,
            interval=event.interval,
            current_period_start=event.current_period_start,
            current_period_end=event.current_period_end,
            cancel_at_period_end=event.cancel_at_period_end,
            canceled_at=event.canceled_at,
        )
        statement = insert_statement.on_conflict_do_update(
            index_elements=["stripe_subscription_id"],
            set_={
                **{column: insert_statement.excluded[column] for column in MUTABLE_COLUMNS},
                "updated_at": func.now(),
            },
        )
        self._db.execute(statement)
        logger.info(
            "subscription_upserted subscription_id=%s status=%s",
            event.subscription_id,
            event.subscription_status or DEFAULT_STATUS,
        )

    def _cancel(self, event: PublishedEvent) -> None:
        result = self._db.execute(
            update(Subscription)
            .where(Subscription.stripe_subscription_id == event.subscription_id)
            .values(
                status=CANCELED_STATUS,
                canceled_at=event.canceled_at or self._clock(),
                updated_at=func.now(),
            )
        )
        if result.rowcount == 0:
            logger.warning("subscription_cancel_unknown subscription_id=%s", event.subscription_id)
        else:
            logger.info("subscription_canceled subscription_id=%s", event.subscription_id)
