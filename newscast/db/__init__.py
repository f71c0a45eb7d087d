"""Database models and session helpers."""

from .database import (
    check_database_connection,
    create_db_engine,
    get_db_session,
    init_database,
    make_session_factory,
)
from .models import Base, ContinuationRecord, ContinuationStatus, KeyValueEntry

__all__ = [
    "Base",
    "ContinuationRecord",
    "ContinuationStatus",
    "KeyValueEntry",
    "check_database_connection",
    "create_db_engine",
    "get_db_session",
    "init_database",
    "make_session_factory",
]
