"""
Database initialization and connection management utilities.

Both the import state database and the destination user store are reached
through this module. Engines and session factories are cached per database
URL so the two can live side by side in one process.
"""

import threading
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, MetaData, create_engine, event, pool
from sqlalchemy.orm import Session, sessionmaker

from user_import.client.exceptions import ConfigurationError, StateError, UserImportError
from user_import.utils.logging import get_logger

logger = get_logger(__name__)

_engines: dict[str, Engine] = {}
_session_factories: dict[str, sessionmaker] = {}
_registry_lock = threading.Lock()


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """Enable foreign key constraints for each new SQLite connection."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_database_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 3600,
) -> Engine:
    """
    Create a SQLAlchemy engine with appropriate settings.

    Args:
        database_url: Database connection URL (sqlite:/// or postgresql://)
        echo: Whether to log SQL statements
        pool_size: Number of connections to maintain in the pool
        max_overflow: Connections allowed beyond pool_size
        pool_timeout: Timeout for getting a connection from the pool (seconds)
        pool_recycle: Recycle connections after this many seconds

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ConfigurationError: If database URL is invalid
    """
    if not database_url:
        raise ConfigurationError("Database URL cannot be empty")

    try:
        if database_url.startswith("sqlite"):
            # Worker threads share the file; NullPool avoids cross-thread connection reuse
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=pool.NullPool,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        else:
            engine = create_engine(
                database_url,
                echo=echo,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_pre_ping=True,
                pool_recycle=pool_recycle,
            )
    except Exception as e:
        logger.error("database_engine_failed", error=str(e))
        raise ConfigurationError(f"Failed to create database engine: {e}") from e

    logger.debug("database_engine_created", dialect=engine.dialect.name)
    return engine


def init_database(database_url: str, metadata: MetaData, **engine_kwargs) -> Engine:
    """
    Initialize a database and create the tables of ``metadata``.

    Idempotent: repeated calls for the same URL reuse the cached engine.

    Raises:
        ConfigurationError: If database initialization fails
    """
    with _registry_lock:
        engine = _engines.get(database_url)
        if engine is None:
            engine = create_database_engine(database_url, **engine_kwargs)
            _engines[database_url] = engine
            _session_factories[database_url] = sessionmaker(bind=engine, expire_on_commit=False)

    try:
        metadata.create_all(engine)
    except Exception as e:
        logger.error("database_init_failed", error=str(e))
        raise ConfigurationError(f"Failed to initialize database: {e}") from e

    logger.debug("database_initialized", tables=len(metadata.tables))
    return engine


@contextmanager
def get_session(database_url: str) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Commits on success and rolls back on exception. Errors from this package
    pass through unchanged; anything else is wrapped in ``StateError``.

    Raises:
        ConfigurationError: If the database was never initialized
        StateError: If a database operation fails
    """
    session_factory = _session_factories.get(database_url)
    if session_factory is None:
        raise ConfigurationError(f"Database not initialized: {database_url}")

    session = session_factory()
    try:
        yield session
        session.commit()
    except UserImportError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.error("database_session_rolled_back", error=str(e))
        raise StateError(f"Database operation failed: {e}") from e
    finally:
        session.close()


def dispose_engines() -> None:
    """Dispose every cached engine (used on shutdown and between tests)."""
    with _registry_lock:
        for engine in _engines.values():
            engine.dispose()
        _engines.clear()
        _session_factories.clear()
