from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Billing Webhooks"
    app_env: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "billing_webhooks"
    postgres_user: str = "billing_webhooks"
    postgres_password: str = "billing_webhooks"

    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_socket_timeout_seconds: float = 2.0

    database_url: str | None = None
    redis_url: str | None = None
    worker_heartbeat_key: str = "worker:heartbeat"
    worker_heartbeat_ttl_seconds: int = 45

    stripe_webhook_secret: str | None = None
    stripe_webhook_tolerance_seconds: int = 300

    webhook_events_queue: str = "webhook-events"
    subscription_projector_max_retries: int = 5
    subscription_projector_retry_backoff_seconds: int = 10

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def sqlalchemy_database_uri(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def cache_redis_url(self) -> str:
        if self.redis_url:
            return self.redis_url
        return f"redis://{self.redis_host}:{self.redis_port}/0"


settings = Settings()
