"""
Database configuration and session management.

This module sets up SQLAlchemy engine and session factory. PostgreSQL is the
production target; SQLite URLs are accepted for local runs.
"""

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import get_settings


def build_engine(database_url: str, echo: bool = False, **kwargs: Any) -> Engine:
    """
    Create a SQLAlchemy engine with pool settings suited to the backend.

    Args:
        database_url: SQLAlchemy database URL.
        echo: Log every SQL statement.
        **kwargs: Extra arguments forwarded to create_engine.

    Returns:
        Configured Engine.
    """
    if database_url.startswith("sqlite"):
        # Processing runs touch the session from worker threads
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        return create_engine(database_url, echo=echo, connect_args=connect_args, **kwargs)

    # - pool_pre_ping: Verify connections are alive before using them
    # - pool_size: Number of connections to keep in pool
    # - max_overflow: Number of connections to allow beyond pool_size
    kwargs.setdefault("pool_pre_ping", True)
    kwargs.setdefault("pool_size", 5)
    kwargs.setdefault("max_overflow", 10)
    return create_engine(database_url, echo=echo, **kwargs)


_settings = get_settings()

engine = build_engine(_settings.database_url, echo=_settings.sql_debug)

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

# Base class for declarative models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.

    Usage in FastAPI:
        @app.get("/items")
        def get_items(db: Session = Depends(get_db)):
            ...

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None) -> None:
    """
    Initialize the database by creating all tables.

    Note: In production, use Alembic migrations instead.
    """
    # Import models to ensure they are registered with Base
    from . import models_db  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
