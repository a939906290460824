from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.infrastructure.db.instrumentation import instrument_engine

# Sync engine used by the Celery worker (subscription projection, heartbeats).
engine = instrument_engine(
    create_engine(settings.sqlalchemy_database_uri, pool_pre_ping=True),
    operation="worker_sql",
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
