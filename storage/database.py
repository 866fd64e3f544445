"""
Storage - Database Engine and Sessions.

============================================================
PURPOSE
============================================================
Creates the SQLAlchemy engine and session factory for the
lifecycle metadata store.

- DATABASE_URL from the environment (.env supported)
- SQLite for local runs and tests, PostgreSQL in production
- Explicit session scopes; repositories commit single-row
  changes themselves

============================================================
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from storage.models import Base
from storage.repositories.exceptions import ConnectionError


load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///lifecycle.db"


# =============================================================
# DATABASE ENGINE
# =============================================================

def get_database_url() -> str:
    """Get database URL from environment."""
    url = os.getenv("DATABASE_URL")
    if not url:
        url = DEFAULT_DATABASE_URL
        logger.warning(f"DATABASE_URL not set, using default: {url}")
    return url


def create_database_engine(
    url: Optional[str] = None,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> Engine:
    """
    Create a SQLAlchemy engine.

    In-memory SQLite uses a StaticPool so every session sees the
    same database; file SQLite relies on the default pool; other
    backends get a QueuePool.

    Args:
        url: Database URL (defaults to DATABASE_URL)
        pool_size: Number of connections to keep in pool
        max_overflow: Max connections beyond pool_size
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements

    Returns:
        SQLAlchemy Engine
    """
    url = url or get_database_url()
    logger.info(f"Creating database engine for: {url.split('@')[-1]}")

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}, "echo": echo}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_recycle=pool_recycle,
        pool_pre_ping=True,
        echo=echo,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to an engine."""
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


def init_database(engine: Engine) -> None:
    """
    Create all lifecycle tables.

    Raises:
        ConnectionError: If the database cannot be reached
    """
    try:
        Base.metadata.create_all(engine)
        logger.info(f"Lifecycle schema ready ({len(Base.metadata.tables)} tables)")
    except OperationalError as e:
        logger.error(f"Schema creation failed: {e}")
        raise ConnectionError(
            repository_name="database",
            operation="init_database",
            original_error=str(e),
        ) from e


def verify_database_connection(engine: Engine) -> bool:
    """Run a trivial query to prove connectivity."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return True
    except OperationalError as e:
        logger.error(f"Database connection failed: {e}")
        raise ConnectionError(
            repository_name="database",
            operation="verify_connection",
            original_error=str(e),
        ) from e


# =============================================================
# SESSION MANAGEMENT
# =============================================================

@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Session with rollback on error and guaranteed close.

    Usage:
        with session_scope(factory) as session:
            PolicyRepository(session).list_all()
    """
    session = factory()
    try:
        yield session
    except SQLAlchemyError as e:
        logger.error(f"Database error, rolling back: {e}")
        session.rollback()
        raise
    finally:
        session.close()
