"""
Database connection and session management.
Uses SQLAlchemy for Postgres connections.

Each worker process builds its own engine (and therefore its own connection
pool) when this module is imported.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import URL
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from reviews_api.config import Settings, settings

logger = logging.getLogger(__name__)

# Base class for all database models (must be defined before engine)
Base = declarative_base()


def build_database_url(config: Settings):
    """DATABASE_URL if set, otherwise a psycopg2 URL assembled from DB_* parts."""
    if config.database_url:
        return config.database_url
    return URL.create(
        "postgresql+psycopg2",
        username=config.db_user,
        password=config.db_password,
        host=config.db_host,
        port=config.db_port,
        database=config.db_name,
    )


def create_db_engine(config: Settings):
    url = build_database_url(config)
    if str(url).startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=config.db_pool_size,
        max_overflow=config.db_max_overflow,
    )


engine = create_db_engine(settings)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """
    Dependency function that provides a database session.
    The session is closed on every exit path, returning its connection to the pool.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Scope a unit of work on one session.

    Commits when the block exits normally; rolls back and re-raises on any
    exception so no partial write is ever committed.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
