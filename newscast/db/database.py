"""
Database engine and session management.

Provides:
- Engine factory with NullPool and SQLite tuning (WAL, busy timeout)
- Session-per-operation context manager with rollback and logging
- Table creation for the key-value and continuation tables
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional
from urllib.parse import urlparse

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from newscast.logger import log_function, setup_logging

from .models import Base


db_logger = setup_logging(logger_name="database")


def validate_database_url(url: Optional[str]) -> tuple[bool, str]:
    """Validate the database URL and make sure a SQLite parent directory exists.

    Args:
        url: SQLAlchemy database URL

    Returns:
        Tuple of (is_valid, database path or error message)
    """
    if not url:
        return False, "DATABASE_URL is empty"
    try:
        parsed = urlparse(url)
    except ValueError as e:
        return False, f"Invalid database URL format: {e}"

    if not parsed.scheme.startswith("sqlite"):
        return True, url

    # sqlite:///relative.db -> "relative.db", sqlite:////abs/path.db -> "/abs/path.db"
    db_path = parsed.path[1:] if parsed.path.startswith("/") else parsed.path
    if not db_path or db_path == ":memory:":
        return False, "SQLite database file path is empty"

    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return True, db_path


def optimize_sqlite_connection(dbapi_connection, connection_record):
    """Apply SQLite-specific settings when a connection is created."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def create_db_engine(database_url: str) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    Args:
        database_url: SQLAlchemy URL, e.g. "sqlite:///data/newscast.db"

    Returns:
        Configured engine

    Raises:
        ValueError: If the URL is invalid
    """
    is_valid, db_info = validate_database_url(database_url)
    if not is_valid:
        db_logger.error(f"Database configuration error: {db_info}")
        raise ValueError(f"Database configuration error: {db_info}")

    is_sqlite = database_url.startswith("sqlite")
    engine = create_engine(
        database_url,
        poolclass=NullPool,
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30} if is_sqlite else {},
    )
    if is_sqlite:
        event.listen(engine, "connect", optimize_sqlite_connection)

    db_logger.info(f"Database engine created: {db_info}")
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    """Build a session factory bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for database sessions (session-per-operation pattern).

    Usage:
        with get_db_session(factory) as session:
            session.add(KeyValueEntry(key="k", value="{}"))
            session.commit()
    """
    session = session_factory()
    try:
        yield session

    except OperationalError as e:
        db_logger.error(f"Database operational error: {e}")
        session.rollback()
        error_msg = str(e.orig) if hasattr(e, "orig") else str(e)
        if "no such table" in error_msg.lower():
            raise RuntimeError(
                "Database table does not exist. Run `python -m newscast.pipeline init-db` first."
            ) from e
        raise

    except SQLAlchemyError as e:
        db_logger.error(f"Database error: {e}")
        session.rollback()
        raise

    except Exception as e:
        db_logger.error(f"Unexpected database error: {e}")
        session.rollback()
        raise

    finally:
        session.close()


@log_function(logger_name="database", log_execution_time=True)
def init_database(engine: Engine) -> None:
    """Create all tables defined in the models."""
    Base.metadata.create_all(bind=engine)
    db_logger.info("Database tables created successfully")


def check_database_connection(engine: Engine) -> bool:
    """
    Check if the database connection is working.

    Returns:
        bool: True if connection is successful, False otherwise
    """
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        db_logger.error(f"Database connection test failed: {e}")
        return False
