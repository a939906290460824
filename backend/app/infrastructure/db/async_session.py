from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.config import settings
from app.infrastructure.db.instrumentation import instrument_engine

# Async engine used by the API (ingestion and read endpoints).
async_engine = create_async_engine(settings.sqlalchemy_database_uri, pool_pre_ping=True)
instrument_engine(async_engine.sync_engine, operation="api_sql")
AsyncSessionLocal = async_sessionmaker(bind=async_engine, expire_on_commit=False, autoflush=False)
