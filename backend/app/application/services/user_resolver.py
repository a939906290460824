from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.application.services.webhook_errors import TransientResolverFailure
from app.domain.models.user import User

logger = logging.getLogger(__name__)


async def find_user_id_by_stripe_customer_id(db: AsyncSession, stripe_customer_id: str) -> UUID | None:
    try:
        result = await db.execute(select(User.id).where(User.stripe_customer_id == stripe_customer_id))
    except SQLAlchemyError as exc:
        raise TransientResolverFailure(f"User lookup failed for customer {stripe_customer_id}") from exc
    return result.scalar_one_or_none()


class UserResolver:
    """Maps a Stripe customer id to an internal user id.

    Webhooks routinely arrive for customers that are not linked to a user
    yet, so a miss is logged and answered with ``None``. Lookup failures
    degrade the same way: an event without a user is still worth storing.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def resolve(self, customer_id: str | None) -> UUID | None:
        if not customer_id:
            return None
        try:
            async with self._session_factory() as db:
                user_id = await find_user_id_by_stripe_customer_id(db, customer_id)
        except TransientResolverFailure:
            logger.warning("user_resolution_failed stripe_customer_id=%s", customer_id, exc_info=True)
            return None
        if user_id is None:
            logger.warning("user_not_found stripe_customer_id=%s", customer_id)
        return user_id
