import json
import time
import uuid

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.application.services.stripe_signature_service import StripeSignatureVerifier, compute_signature
from app.application.services.webhook_publisher import PublishedEvent
from app.domain.models.user import User
from app.domain.models.webhook_event import WebhookEvent
from app.infrastructure.db.base import Base
from app.interfaces.api.deps import get_session_factory, get_signature_verifier, get_webhook_event_topic
from main import app

WEBHOOK_SECRET = "whsec_test"


class RecordingTopic:
    def __init__(self) -> None:
        self.error: Exception | None = None
        self.published: list[PublishedEvent] = []

    async def publish(self, event: PublishedEvent) -> None:
        if self.error is not None:
            raise self.error
        self.published.append(event)


async def _create_session_factory(*, create_tables: bool = True):
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    if create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    return engine, async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session_factory():
    engine, factory = await _create_session_factory()
    yield factory
    await engine.dispose()


@pytest.fixture
def topic():
    return RecordingTopic()


def _override_dependencies(session_factory, topic) -> None:
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_webhook_event_topic] = lambda: topic
    app.dependency_overrides[get_signature_verifier] = lambda: StripeSignatureVerifier(WEBHOOK_SECRET)


@pytest_asyncio.fixture
async def client(session_factory, topic):
    _override_dependencies(session_factory, topic)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _signed_headers(body: bytes, *, secret: str = WEBHOOK_SECRET) -> dict:
    timestamp = int(time.time())
    signature = compute_signature(secret, timestamp=timestamp, payload_bytes=body)
    return {"Content-Type": "application/json", "Stripe-Signature": f"t={timestamp},v1={signature}"}


def _body(event: dict) -> bytes:
    return json.dumps(event, separators=(",", ":")).encode("utf-8")


def _subscription_event(event_id: str, event_type: str = "customer.subscription.updated", customer: str = "cus_1") -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "api_version": "2024-06-20",
        "livemode": False,
        "data": {
            "object": {
                "id": "sub_1",
                "object": "subscription",
                "customer": customer,
                "status": "active",
                "amount_due": 9999,
                "current_period_start": 1760000000,
                "current_period_end": 1762592000,
                "items": {
                    "data": [
                        {
                            "price": {
                                "id": "price_monthly",
                                "unit_amount": 1500,
                                "currency": "usd",
                                "recurring": {"interval": "month"},
                            }
                        }
                    ]
                },
            }
        },
    }


async def _seed_user(session_factory, *, stripe_customer_id: str = "cus_1") -> User:
    async with session_factory() as db:
        user = User(email=f"{uuid.uuid4().hex[:8]}@billing.test", name="Billing User", stripe_customer_id=stripe_customer_id)
        db.add(user)
        await db.commit()
    return user


async def _stored_events(session_factory) -> list[WebhookEvent]:
    async with session_factory() as db:
        result = await db.execute(select(WebhookEvent))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_snapshot_event_is_stored_and_published(client, session_factory, topic):
    user = await _seed_user(session_factory)
    event = _subscription_event("evt_snapshot")

    response = await client.post("/webhook/stripe", content=_body(event), headers=_signed_headers(_body(event)))

    assert response.status_code == 200
    assert response.json() == {
        "received": True,
        "event_type": "customer.subscription.updated",
        "payload_style": "snapshot",
    }
    [row] = await _stored_events(session_factory)
    assert row.stripe_event_id == "evt_snapshot"
    assert row.user_id == user.id
    assert row.customer_id == "cus_1"
    assert row.subscription_id == "sub_1"
    assert row.amount == 1500
    assert row.currency == "usd"
    assert row.subscription_interval == "month"
    assert row.processed is False
    assert row.payload == event
    assert [message.stripe_event_id for message in topic.published] == ["evt_snapshot"]
    assert topic.published[0].user_id == user.id


@pytest.mark.asyncio
async def test_redelivered_event_is_stored_once(client, session_factory):
    body = _body(_subscription_event("evt_redelivered"))

    first = await client.post("/webhook/stripe", content=body, headers=_signed_headers(body))
    second = await client.post("/webhook/stripe", content=body, headers=_signed_headers(body))

    assert first.status_code == 200
    assert second.status_code == 200
    async with session_factory() as db:
        count = (
            await db.execute(
                select(func.count()).select_from(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_redelivered")
            )
        ).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_missing_signature_is_rejected_without_side_effects(client, session_factory, topic):
    body = _body(_subscription_event("evt_unsigned"))

    response = await client.post("/webhook/stripe", content=body, headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert "Missing" in response.json()["error"]
    assert await _stored_events(session_factory) == []
    assert topic.published == []


@pytest.mark.asyncio
async def test_wrong_signature_is_rejected_without_side_effects(client, session_factory, topic):
    body = _body(_subscription_event("evt_forged"))

    response = await client.post("/webhook/stripe", content=body, headers=_signed_headers(body, secret="whsec_wrong"))

    assert response.status_code == 400
    payload = response.json()
    assert payload["error"] == "Webhook signature verification failed"
    assert payload["message"]
    assert await _stored_events(session_factory) == []
    assert topic.published == []


@pytest.mark.asyncio
async def test_invoice_event_is_published_and_product_event_is_not(client, session_factory, topic):
    invoice = {
        "id": "evt_invoice_failed",
        "type": "invoice.payment_failed",
        "data": {"object": {"id": "in_1", "object": "invoice", "customer": "cus_1", "subscription": "sub_1", "amount_due": 1500}},
    }
    product = {
        "id": "evt_product_created",
        "type": "product.created",
        "data": {"object": {"id": "prod_1", "object": "product", "name": "Pro", "active": True}},
    }

    for event in (invoice, product):
        response = await client.post("/webhook/stripe", content=_body(event), headers=_signed_headers(_body(event)))
        assert response.status_code == 200

    stored_ids = {row.stripe_event_id for row in await _stored_events(session_factory)}
    assert stored_ids == {"evt_invoice_failed", "evt_product_created"}
    assert [message.stripe_event_id for message in topic.published] == ["evt_invoice_failed"]


@pytest.mark.asyncio
async def test_thin_related_object_event(client, session_factory, topic):
    event = {
        "id": "evt_thin",
        "object": "v2.core.event",
        "type": "v1.customer.subscription.updated",
        "livemode": True,
        "related_object": {"id": "sub_thin", "type": "subscription", "url": "/v1/subscriptions/sub_thin"},
    }

    response = await client.post("/webhook/stripe", content=_body(event), headers=_signed_headers(_body(event)))

    assert response.status_code == 200
    assert response.json()["payload_style"] == "thin"
    [row] = await _stored_events(session_factory)
    assert row.subscription_id == "sub_thin"
    assert row.customer_id is None
    assert row.invoice_id is None
    assert row.amount is None
    assert row.cancel_at_period_end is False
    assert row.livemode is True
    assert row.user_id is None
    assert topic.published[0].subscription_id == "sub_thin"


@pytest.mark.asyncio
async def test_unknown_customer_is_stored_without_user(client, session_factory):
    event = _subscription_event("evt_unlinked", customer="cus_unknown")

    response = await client.post("/webhook/stripe", content=_body(event), headers=_signed_headers(_body(event)))

    assert response.status_code == 200
    [row] = await _stored_events(session_factory)
    assert row.customer_id == "cus_unknown"
    assert row.user_id is None


@pytest.mark.asyncio
async def test_publish_failure_still_acknowledges(client, session_factory, topic):
    topic.error = ConnectionError("broker unavailable")
    event = _subscription_event("evt_publish_fails")

    response = await client.post("/webhook/stripe", content=_body(event), headers=_signed_headers(_body(event)))

    assert response.status_code == 200
    assert [row.stripe_event_id for row in await _stored_events(session_factory)] == ["evt_publish_fails"]


@pytest.mark.asyncio
async def test_storage_failure_returns_500_and_publishes_nothing(topic):
    # No tables: the user lookup degrades to None, the insert fails.
    engine, broken_factory = await _create_session_factory(create_tables=False)
    _override_dependencies(broken_factory, topic)
    event = _subscription_event("evt_storage_fails")
    try:
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as test_client:
            response = await test_client.post(
                "/webhook/stripe", content=_body(event), headers=_signed_headers(_body(event))
            )
    finally:
        app.dependency_overrides.clear()
        await engine.dispose()

    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"
    assert "evt_storage_fails" in response.json()["message"]
    assert topic.published == []


@pytest.mark.asyncio
async def test_unknown_provider_is_not_found(client):
    body = _body(_subscription_event("evt_other_provider"))

    response = await client.post("/webhook/paddle", content=body, headers=_signed_headers(body))

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_user_webhook_listing_and_customer_lookup(client, session_factory):
    user = await _seed_user(session_factory, stripe_customer_id="cus_listed")
    for event_id in ("evt_list_1", "evt_list_2"):
        event = _subscription_event(event_id, customer="cus_listed")
        response = await client.post("/webhook/stripe", content=_body(event), headers=_signed_headers(_body(event)))
        assert response.status_code == 200

    listed = await client.get(f"/webhooks/users/{user.id}")
    via_user = await client.get(f"/users/{user.id}/webhooks")
    missing_user = await client.get(f"/users/{uuid.uuid4()}/webhooks")
    lookup = await client.get("/users/by-stripe-customer/cus_listed")
    unknown_lookup = await client.get("/users/by-stripe-customer/cus_nobody")

    assert listed.status_code == 200
    assert {item["stripe_event_id"] for item in listed.json()["webhooks"]} == {"evt_list_1", "evt_list_2"}
    assert listed.json()["webhooks"][0]["amount"] == 1500
    assert via_user.status_code == 200
    assert len(via_user.json()["webhooks"]) == 2
    assert missing_user.status_code == 404
    assert missing_user.json()["error_code"] == "not_found"
    assert lookup.json() == {"user_id": str(user.id)}
    assert unknown_lookup.json() == {"user_id": None}
