"""
Database engine and session management for Portfolio Ledger.
Uses SQLModel for persistent storage of transactions.
SQLite databases run in Write-Ahead Logging (WAL) mode.
"""

from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy.pool import StaticPool
from typing import Optional
import logging

from config import get_settings

logger = logging.getLogger(__name__)

# Global engine instance
_engine: Optional[object] = None


def get_engine():
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        kwargs = {"echo": settings.db_echo}
        if settings.is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in settings.database_url or settings.database_url == "sqlite://":
                # One shared connection, otherwise every session sees an empty database
                kwargs["poolclass"] = StaticPool
        _engine = create_engine(settings.database_url, **kwargs)
        if settings.is_sqlite:
            _enable_wal_mode()
    return _engine


def _enable_wal_mode():
    """Enable SQLite WAL mode for improved concurrent read/write performance."""
    if _engine is None:
        return

    try:
        with _engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL")
            conn.exec_driver_sql("PRAGMA busy_timeout=5000")
            logger.info("SQLite WAL mode enabled for concurrent access")
    except Exception as e:
        logger.warning(f"Could not enable WAL mode: {e}")


def set_engine(engine) -> None:
    """Install an externally created engine (used by tests)."""
    global _engine
    _engine = engine


def reset_engine() -> None:
    """Dispose of the current engine so the next call rebuilds it from settings."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


def init_db():
    """Initialize the database and create all tables."""
    from models import Transaction  # noqa: F401  registers the table

    engine = get_engine()
    SQLModel.metadata.create_all(engine)
    logger.info("Database initialized")


def get_session():
    """Get a new database session."""
    return Session(get_engine())
