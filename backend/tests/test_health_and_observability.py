import json
import logging

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import workers.tasks as worker_tasks
from app.application.services.webhook_publisher import PublishedEvent
from app.infrastructure.cache import redis_client
from app.infrastructure.logging.context import (
    reset_request_id,
    reset_stripe_event_id,
    set_request_id,
    set_stripe_event_id,
)
from app.infrastructure.logging.json_formatter import JsonLogFormatter
from app.infrastructure.messaging.celery_topic import CeleryWebhookEventTopic
from app.infrastructure.observability import metrics
from app.interfaces.api import health
from app.interfaces.api.deps import get_session_factory
from main import app


async def _client_for(session_factory):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


@pytest_asyncio.fixture
async def healthy_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield async_sessionmaker(bind=engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def unreachable_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'billing.db'}")
    yield async_sessionmaker(bind=engine, expire_on_commit=False)
    await engine.dispose()


@pytest.mark.asyncio
async def test_health_reports_ok_when_all_services_are_up(healthy_factory, monkeypatch):
    monkeypatch.setattr(health, "_check_broker", lambda: ("up", 0.4, True))

    async with await _client_for(healthy_factory) as client:
        response = await client.get("/health")
    app.dependency_overrides.clear()

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["services"]["database"] == "up"
    assert payload["services"]["broker"] == "up"
    assert payload["services"]["worker_alive"] is True
    assert response.headers["X-Request-ID"]
    assert response.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.asyncio
async def test_ready_stays_ready_without_broker(healthy_factory, monkeypatch):
    monkeypatch.setattr(health, "_check_broker", lambda: ("down", None, False))

    async with await _client_for(healthy_factory) as client:
        health_response = await client.get("/health")
        ready_response = await client.get("/ready")
    app.dependency_overrides.clear()

    assert health_response.json()["status"] == "degraded"
    assert ready_response.status_code == 200
    assert ready_response.json()["status"] == "ready"


@pytest.mark.asyncio
async def test_ready_fails_when_database_is_down(unreachable_factory, monkeypatch):
    monkeypatch.setattr(health, "_check_broker", lambda: ("up", 0.4, True))

    async with await _client_for(unreachable_factory) as client:
        response = await client.get("/ready")
    app.dependency_overrides.clear()

    assert response.status_code == 503
    assert response.json()["status"] == "not_ready"
    assert response.json()["services"]["database"] == "down"


@pytest.mark.asyncio
async def test_metrics_endpoint_exposes_webhook_counters():
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        response = await client.get("/metrics")

    assert response.status_code == 200
    assert "webhook_events_received_total" in response.text


@pytest.mark.asyncio
async def test_request_id_header_is_echoed(healthy_factory, monkeypatch):
    monkeypatch.setattr(health, "_check_broker", lambda: ("up", 0.4, True))

    async with await _client_for(healthy_factory) as client:
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})
    app.dependency_overrides.clear()

    assert response.headers["X-Request-ID"] == "req-123"


def test_json_formatter_includes_request_and_event_context():
    record = logging.LogRecord("app.webhooks", logging.INFO, __file__, 1, "stored %s", ("evt_1",), None)
    request_token = set_request_id("req-1")
    event_token = set_stripe_event_id("evt_1")
    try:
        line = json.loads(JsonLogFormatter().format(record))
    finally:
        reset_stripe_event_id(event_token)
        reset_request_id(request_token)

    assert line["message"] == "stored evt_1"
    assert line["level"] == "INFO"
    assert line["logger"] == "app.webhooks"
    assert line["request_id"] == "req-1"
    assert line["stripe_event_id"] == "evt_1"


def test_json_formatter_omits_event_id_outside_ingestion():
    record = logging.LogRecord("app", logging.WARNING, __file__, 1, "plain", (), None)

    line = json.loads(JsonLogFormatter().format(record))

    assert "stripe_event_id" not in line


@pytest.mark.asyncio
async def test_celery_topic_enqueues_json_message(monkeypatch):
    calls = []
    monkeypatch.setattr(
        worker_tasks.project_subscription_event,
        "apply_async",
        lambda **kwargs: calls.append(kwargs),
    )
    topic = CeleryWebhookEventTopic(queue="webhook-events")
    event = PublishedEvent(stripe_event_id="evt_1", event_type="customer.subscription.created", subscription_id="sub_1")

    await topic.publish(event)

    assert calls == [{"kwargs": {"event": event.model_dump(mode="json")}, "queue": "webhook-events"}]


class FakeRedis:
    def __init__(self) -> None:
        self.hashes: dict[str, dict[str, int]] = {}

    def hincrby(self, key: str, field: str, amount: int) -> None:
        bucket = self.hashes.setdefault(key, {})
        bucket[field] = bucket.get(field, 0) + amount

    def hgetall(self, key: str) -> dict[str, str]:
        return {field: str(value) for field, value in self.hashes.get(key, {}).items()}


def test_projection_counts_are_mirrored_through_redis(monkeypatch):
    fake_redis = FakeRedis()
    monkeypatch.setattr(redis_client, "get_redis_client", lambda: fake_redis)
    monkeypatch.setattr(metrics, "_last_projection_counts", dict.fromkeys(metrics.PROJECTION_ACTIONS, 0.0))

    metrics.record_projection("upserted")
    metrics.record_projection("upserted")
    metrics.record_projection("canceled")
    metrics.metrics_response()

    assert fake_redis.hashes[metrics.PROJECTION_COUNTS_KEY] == {"upserted": 2, "canceled": 1}
    assert metrics._last_projection_counts["upserted"] == 2.0
    assert metrics._last_projection_counts["canceled"] == 1.0
