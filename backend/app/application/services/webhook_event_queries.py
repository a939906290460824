from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.models.user import User
from app.domain.models.webhook_event import WebhookEvent


def serialize_webhook_event(event: WebhookEvent) -> dict:
    return {
        "id": str(event.id),
        "stripe_event_id": event.stripe_event_id,
        "event_type": event.event_type,
        "customer_id": event.customer_id,
        "subscription_id": event.subscription_id,
        "amount": event.amount,
        "currency": event.currency,
        "subscription_status": event.subscription_status,
        "created_at": event.created_at.isoformat() if event.created_at else None,
    }


async def list_webhook_events_for_user(db: AsyncSession, user_id: UUID) -> list[WebhookEvent]:
    result = await db.execute(
        select(WebhookEvent)
        .where(WebhookEvent.user_id == user_id)
        .order_by(WebhookEvent.created_at.desc(), WebhookEvent.id.desc())
    )
    return list(result.scalars().all())


async def user_exists(db: AsyncSession, user_id: UUID) -> bool:
    result = await db.execute(select(User.id).where(User.id == user_id))
    return result.scalar_one_or_none() is not None
