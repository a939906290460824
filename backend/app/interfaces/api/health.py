import asyncio
from time import perf_counter

from fastapi import APIRouter, Depends, Response, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.observability.metrics import measure_redis, metrics_response
from app.interfaces.api.deps import get_session_factory

router = APIRouter()


def _check_broker() -> tuple[str, float | None, bool]:
    try:
        redis_client = get_redis_client()
        started_at = perf_counter()
        with measure_redis("health_ping"):
            redis_client.ping()
        latency_ms = round((perf_counter() - started_at) * 1000, 2)

        with measure_redis("health_worker_heartbeat_check"):
            worker_alive = bool(redis_client.exists(settings.worker_heartbeat_key))
    except RedisError:
        return "down", None, False
    return "up", latency_ms, worker_alive


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict:
    db_status = "up"
    db_latency_ms: float | None = None

    try:
        db_started_at = perf_counter()
        async with session_factory() as db:
            await db.execute(text("SELECT 1"))
        db_latency_ms = round((perf_counter() - db_started_at) * 1000, 2)
    except SQLAlchemyError:
        db_status = "down"

    broker_status, broker_latency_ms, worker_alive = await asyncio.to_thread(_check_broker)

    overall = "ok" if db_status == "up" and broker_status == "up" and worker_alive else "degraded"

    return {
        "status": overall,
        "services": {
            "api": "up",
            "database": db_status,
            "broker": broker_status,
            "worker_alive": worker_alive,
            "db_latency_ms": db_latency_ms,
            "broker_latency_ms": broker_latency_ms,
        },
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(
    response: Response,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict:
    payload = await health_check(session_factory)
    services = payload["services"]
    # The webhook endpoint only needs the database; fan-out degrades gracefully without the broker.
    if services["database"] != "up":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "services": services}
    return {"status": "ready", "services": services}


@router.get("/metrics", include_in_schema=False)
def metrics():
    return metrics_response()
