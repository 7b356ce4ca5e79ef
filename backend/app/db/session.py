"""
Database session configuration.

Provides the SQLAlchemy engine and session factory backing the
reference store. Supports both PostgreSQL and SQLite.
"""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.config import settings
from app.db.base import Base
from app import models  # noqa: F401  registers the reference tables on Base


def build_engine(database_url: str) -> Engine:
    """
    Create an engine with settings appropriate for the database type.

    Args:
        database_url: SQLAlchemy database URL.

    Returns:
        Engine: Configured SQLAlchemy engine.
    """
    if database_url.startswith("sqlite"):
        # Lookups run on worker threads
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    """Return a session factory bound to ``engine``."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )


@lru_cache()
def get_engine() -> Engine:
    """
    Engine for the configured DATABASE_URL.

    Built on first use so importing the application never opens a
    connection or requires a database driver.
    """
    return build_engine(settings.DATABASE_URL)


@lru_cache()
def get_session_factory() -> sessionmaker:
    return build_session_factory(get_engine())


def init_db(engine: Engine) -> None:
    """Create any missing reference tables."""
    Base.metadata.create_all(bind=engine)
