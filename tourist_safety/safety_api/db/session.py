"""Database session factory and connection management."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from .models import Base
from ..config import SafetyServiceConfig


def create_db_engine(database_url: str) -> Engine:
    """Create an engine; SQLite (local runs, tests) skips pool sizing."""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Global session factory (will be initialized in main.py)
SessionLocal: sessionmaker | None = None


def init_db(config: SafetyServiceConfig, create_tables: bool = False) -> None:
    """Initialize database connection and session factory.

    Args:
        config: Safety service configuration
        create_tables: Create missing tables directly instead of relying on
            Alembic migrations
    """
    global SessionLocal
    engine = create_db_engine(config.database.database_url)
    if create_tables:
        Base.metadata.create_all(engine)
    SessionLocal = create_session_factory(engine)


def get_db() -> Session:
    """Get database session dependency for FastAPI.

    Yields:
        Database session

    Raises:
        RuntimeError: If database is not initialized
    """
    if SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
