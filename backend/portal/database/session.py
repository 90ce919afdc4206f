"""
Database engine and session factories.

The engine is created lazily from DATABASE_URL and shared per process.
Request handlers get a session through the get_db_session dependency;
jobs iterate get_db_session_sync().
"""

import logging
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from portal.config.settings import get_settings, normalize_database_url

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_engine(database_url: Optional[str] = None) -> Engine:
    """Return the process-wide engine, creating it on first use."""
    global _engine, _session_factory
    if _engine is None:
        url = normalize_database_url(database_url or get_settings().database_url)
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        _engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
        logger.info("Database engine created", extra={"dialect": _engine.dialect.name})
    return _engine


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        get_engine()
    return _session_factory


def init_db() -> None:
    """Create tables that do not exist yet."""
    from portal.db_base import Base
    import portal.models  # noqa: F401  registers tables on Base.metadata

    Base.metadata.create_all(bind=get_engine())


def get_db_session_sync() -> Generator[Session, None, None]:
    """Yield a session and close it afterwards."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def get_db_session() -> Generator[Session, None, None]:
    """FastAPI dependency providing a request-scoped session."""
    yield from get_db_session_sync()
