from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from redis.exceptions import RedisError
from starlette.responses import Response

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "HTTP requests by route template and status",
    labelnames=("method", "path", "status"),
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds by route template",
    labelnames=("method", "path"),
)
DB_QUERY_DURATION_SECONDS = Histogram(
    "db_query_duration_seconds",
    "Database query duration in seconds",
    labelnames=("operation",),
)
REDIS_LATENCY_SECONDS = Histogram(
    "redis_latency_seconds",
    "Redis command latency in seconds",
    labelnames=("operation",),
)
WEBHOOK_EVENTS_RECEIVED_TOTAL = Counter(
    "webhook_events_received_total",
    "Verified webhook events accepted for ingestion",
    labelnames=("payload_style",),
)
WEBHOOK_EVENTS_DUPLICATE_TOTAL = Counter(
    "webhook_events_duplicate_total",
    "Webhook redeliveries ignored by the idempotent store",
)
WEBHOOK_SIGNATURE_FAILURES_TOTAL = Counter(
    "webhook_signature_failures_total",
    "Webhook requests rejected during signature verification",
    labelnames=("reason",),
)
WEBHOOK_EVENTS_PUBLISHED_TOTAL = Counter(
    "webhook_events_published_total",
    "Webhook events handed to the subscription projection queue",
)
WEBHOOK_PUBLISH_FAILURES_TOTAL = Counter(
    "webhook_publish_failures_total",
    "Webhook events that could not be handed to the projection queue",
)
SUBSCRIPTION_PROJECTIONS_TOTAL = Counter(
    "subscription_projections_total",
    "Published webhook events applied by the subscription projector",
    labelnames=("action",),
)

PROJECTION_ACTIONS = ("upserted", "canceled", "skipped", "ignored")
# Worker processes are not scraped; they mirror projection counts into one Redis hash the API reads back.
PROJECTION_COUNTS_KEY = "metrics:subscription_projections"
_last_projection_counts: dict[str, float] = {action: 0.0 for action in PROJECTION_ACTIONS}


def record_request(method: str, path: str, status_code: int, duration_seconds: float) -> None:
    HTTP_REQUESTS_TOTAL.labels(method=method, path=path, status=str(status_code)).inc()
    HTTP_REQUEST_DURATION_SECONDS.labels(method=method, path=path).observe(duration_seconds)


def observe_db_query(duration_seconds: float, operation: str = "sql") -> None:
    DB_QUERY_DURATION_SECONDS.labels(operation=operation).observe(duration_seconds)


def observe_redis_latency(duration_seconds: float, operation: str) -> None:
    REDIS_LATENCY_SECONDS.labels(operation=operation).observe(duration_seconds)


@contextmanager
def measure_redis(operation: str):
    started_at = perf_counter()
    try:
        yield
    finally:
        observe_redis_latency(perf_counter() - started_at, operation=operation)


def record_projection(action: str) -> None:
    """Count a projection outcome locally and in the Redis mirror."""
    SUBSCRIPTION_PROJECTIONS_TOTAL.labels(action=action).inc()
    if action not in PROJECTION_ACTIONS:
        return
    try:
        from app.infrastructure.cache.redis_client import get_redis_client

        with measure_redis("projection_counter_incr"):
            get_redis_client().hincrby(PROJECTION_COUNTS_KEY, action, 1)
    except RedisError:
        # Mirror is best-effort.
        return


def _sync_projection_counts_from_redis() -> None:
    try:
        from app.infrastructure.cache.redis_client import get_redis_client

        with measure_redis("projection_counter_sync"):
            raw_counts = get_redis_client().hgetall(PROJECTION_COUNTS_KEY) or {}
    except RedisError:
        return

    for action in PROJECTION_ACTIONS:
        current = float(raw_counts.get(action) or 0.0)
        delta = current - _last_projection_counts[action]
        if delta > 0:
            SUBSCRIPTION_PROJECTIONS_TOTAL.labels(action=action).inc(delta)
        _last_projection_counts[action] = current


def metrics_response() -> Response:
    _sync_projection_counts_from_redis()
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
