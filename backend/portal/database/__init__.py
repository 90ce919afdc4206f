"""Database session management."""

from portal.database.session import (
    get_engine,
    get_session_factory,
    get_db_session,
    get_db_session_sync,
    init_db,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "get_db_session",
    "get_db_session_sync",
    "init_db",
]
