from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.application.services.stripe_signature_service import StripeSignatureVerifier
from app.application.services.user_resolver import UserResolver
from app.application.services.webhook_event_store import WebhookEventStore
from app.application.services.webhook_ingestion_service import WebhookIngestionService
from app.application.services.webhook_publisher import WebhookEventPublisher, WebhookEventTopic
from app.core.config import settings
from app.infrastructure.db.async_session import AsyncSessionLocal
from app.infrastructure.messaging.celery_topic import CeleryWebhookEventTopic


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return AsyncSessionLocal


async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as db:
        yield db


def get_signature_verifier() -> StripeSignatureVerifier:
    return StripeSignatureVerifier(
        settings.stripe_webhook_secret,
        tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
    )


def get_webhook_event_topic() -> WebhookEventTopic:
    return CeleryWebhookEventTopic(queue=settings.webhook_events_queue)


def get_webhook_ingestion_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    topic: WebhookEventTopic = Depends(get_webhook_event_topic),
) -> WebhookIngestionService:
    return WebhookIngestionService(
        user_resolver=UserResolver(session_factory),
        event_store=WebhookEventStore(session_factory),
        publisher=WebhookEventPublisher(topic),
    )
