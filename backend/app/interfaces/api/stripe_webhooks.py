import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.services.stripe_signature_service import StripeSignatureVerifier
from app.application.services.webhook_errors import (
    WebhookError,
    WebhookProcessingError,
    WebhookSignatureError,
)
from app.application.services.webhook_event_queries import (
    list_webhook_events_for_user,
    serialize_webhook_event,
)
from app.application.services.webhook_ingestion_service import WebhookIngestionService
from app.infrastructure.observability.metrics import WEBHOOK_SIGNATURE_FAILURES_TOTAL
from app.interfaces.api.deps import get_db, get_signature_verifier, get_webhook_ingestion_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

SUPPORTED_PROVIDERS = {"stripe"}


@router.post("/webhook/{provider}", status_code=status.HTTP_200_OK)
async def receive_webhook(
    provider: str,
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    verifier: StripeSignatureVerifier = Depends(get_signature_verifier),
    ingestion: WebhookIngestionService = Depends(get_webhook_ingestion_service),
):
    if provider not in SUPPORTED_PROVIDERS:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": f"Unknown webhook provider: {provider}"},
        )

    payload_bytes = await request.body()
    try:
        event = verifier.verify(payload_bytes, stripe_signature)
    except WebhookSignatureError as exc:
        WEBHOOK_SIGNATURE_FAILURES_TOTAL.labels(reason=exc.error_code).inc()
        logger.warning("webhook_signature_rejected provider=%s reason=%s", provider, exc.error_code)
        raise

    try:
        outcome = await ingestion.ingest(event)
    except WebhookError:
        raise
    except Exception as exc:
        raise WebhookProcessingError(str(exc) or exc.__class__.__name__) from exc
    return outcome.as_response()


@router.get("/webhooks/users/{user_id}")
async def list_user_webhooks(user_id: UUID, db: AsyncSession = Depends(get_db)) -> dict:
    events = await list_webhook_events_for_user(db, user_id)
    return {"webhooks": [serialize_webhook_event(event) for event in events]}
