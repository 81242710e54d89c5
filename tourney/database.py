"""
Database connection and session management for the Tournament Backend
"""
from typing import Iterator
from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from tourney.core.config import Settings

# Base class for all models
Base = declarative_base()


def create_db_engine(settings: Settings) -> Engine:
    """Create the database engine with connection pooling"""
    url = settings.DATABASE_URL
    if url.startswith("sqlite"):
        # SQLite connections are shared across the scheduler's worker threads
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )
    return create_engine(
        url,
        pool_pre_ping=True,      # Test connections before using
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        echo=settings.DEBUG and settings.LOG_LEVEL.upper() == "DEBUG",
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory for creating database sessions"""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request) -> Iterator[Session]:
    """
    Dependency for getting database session in endpoints

    Usage in FastAPI endpoints:
        def my_endpoint(db: Session = Depends(get_db)):
            ...
    """
    db = request.app.state.services.session_factory()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Engine) -> None:
    """Initialize database tables"""
    # Import models so they are registered on the metadata
    import tourney.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
