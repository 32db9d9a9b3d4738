"""
Database configuration and session management.
"""
import os
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

_engine = None
_SessionLocal = None


def _build_engine(database_url: str) -> Engine:
    echo = os.getenv("SQL_ECHO", "false").lower() == "true"

    if database_url.startswith("sqlite"):
        # SQLite connections are shared across the request threadpool
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=echo
        )

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,  # Verify connections before using
        echo=echo
    )


def get_engine() -> Engine:
    """Get or create the database engine."""
    global _engine, _SessionLocal

    if _engine is None:
        from app.core.config import settings
        _engine = _build_engine(settings.DATABASE_URL)
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

    return _engine


def get_session_factory() -> sessionmaker:
    """Get the session factory, creating the engine on first use."""
    get_engine()
    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.

    Usage in FastAPI:
    ```python
    @router.post("/endpoint")
    def endpoint(db: Session = Depends(get_db)):
        # Use db here
        pass
    ```
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database tables."""
    from app.models.models import Base
    # checkfirst=True will only create tables that don't exist
    Base.metadata.create_all(bind=get_engine(), checkfirst=True)
