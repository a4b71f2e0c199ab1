"""Database connection and session management for QR Payment Service."""

from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from qr_payment.config import settings

# Base class for all ORM models
Base = declarative_base()

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def create_db_engine(database_url: str | None = None, echo: bool | None = None) -> Engine:
    """
    Create a SQLAlchemy engine with connection pooling.

    Args:
        database_url: Connection URL. If None, uses settings.database_url
        echo: Log SQL statements. If None, follows settings.debug

    Returns:
        Configured SQLAlchemy engine
    """
    url = database_url or settings.database_url
    is_sqlite = url.startswith("sqlite")

    engine_kwargs: dict[str, Any] = {
        "echo": settings.debug if echo is None else echo,
        "pool_pre_ping": True,
    }
    if is_sqlite:
        # Concurrent writers wait on the database lock instead of failing
        engine_kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
        }
    else:
        engine_kwargs.update(
            pool_size=10,  # Number of connections to keep open
            max_overflow=20,  # Additional connections when pool is full
            pool_recycle=3600,  # Recycle connections after 1 hour
        )

    engine = create_engine(url, **engine_kwargs)

    if engine.dialect.name == "postgresql":

        @event.listens_for(engine, "connect")
        def set_postgresql_pragma(dbapi_conn, connection_record):  # type: ignore
            cursor = dbapi_conn.cursor()
            cursor.execute("SET timezone='UTC'")
            cursor.execute("SET statement_timeout='30000'")  # 30 second timeout
            cursor.close()

    return engine


# Global engine and session factory (initialized at import, overridable in tests)
engine = create_db_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            TokenRepository(session).get_by_token_id("qr_123")

    Automatically commits on success, rolls back on exception.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine | None = None) -> None:
    """
    Initialize database schema (create all tables).

    WARNING: This should only be used for testing and local development.
    In production, use Alembic migrations.

    Args:
        engine: Optional engine to use. If None, uses global engine.
    """
    # Import models so they register with Base.metadata
    from qr_payment.infrastructure import models  # noqa: F401

    target_engine = engine or globals()["engine"]
    Base.metadata.create_all(bind=target_engine)
