from redis import Redis

from app.core.config import settings


def get_redis_client() -> Redis:
    # Shares the Celery broker instance: heartbeats and mirrored worker counters live here.
    return Redis.from_url(
        settings.cache_redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
    )
