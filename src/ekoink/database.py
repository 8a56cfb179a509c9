from datetime import datetime, timezone
from typing import Generator, Optional
import logging
import uuid

import redis
from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import Settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_id() -> str:
    return str(uuid.uuid4())


class Database:
    """Engine and session factory for one configured database."""

    def __init__(self, settings: Settings):
        url = settings.database_url
        engine_kwargs = {}
        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url == "sqlite://":
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(url, **engine_kwargs)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=self.engine
        )

    def session(self) -> Session:
        return self.SessionLocal()

    def create_tables(self):
        """Create all database tables."""
        from . import models  # noqa: F401  registers every table on Base

        Base.metadata.create_all(bind=self.engine)
        logger.info("✅ Database tables created")


def connect_redis(settings: Settings):
    """Connect to Redis if configured; the service runs without it."""
    if not settings.redis_url:
        return None
    try:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        client.ping()
        logger.info("✅ Redis connected successfully")
        return client
    except Exception as e:
        logger.warning(f"⚠️ Redis not available: {e}")
        return None


def get_db(request: Request) -> Generator[Session, None, None]:
    """Get database session."""
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()


def get_redis(request: Request):
    """Get Redis client (optional)."""
    return request.app.state.redis
