from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.services.user_resolver import find_user_id_by_stripe_customer_id
from app.application.services.webhook_event_queries import (
    list_webhook_events_for_user,
    serialize_webhook_event,
    user_exists,
)
from app.interfaces.api.deps import get_db

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/by-stripe-customer/{stripe_customer_id}")
async def get_user_by_stripe_customer(stripe_customer_id: str, db: AsyncSession = Depends(get_db)) -> dict:
    user_id = await find_user_id_by_stripe_customer_id(db, stripe_customer_id)
    return {"user_id": str(user_id) if user_id else None}


@router.get("/{user_id}/webhooks")
async def get_user_webhooks(user_id: UUID, db: AsyncSession = Depends(get_db)) -> dict:
    if not await user_exists(db, user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error_code": "not_found", "message": "User not found"},
        )
    events = await list_webhook_events_for_user(db, user_id)
    return {"webhooks": [serialize_webhook_event(event) for event in events]}
