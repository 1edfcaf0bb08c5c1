from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager, suppress

from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from mobility_engine.config.settings import settings
from mobility_engine.state.errors import InvalidTransitionError, MalformedProtocolError, NotFoundError

# Lazy initialization to avoid import-time database connections
_engine = None
_SessionLocal = None

# Business logic errors travel through get_session() without being logged as database errors
_BUSINESS_ERRORS = (NotFoundError, MalformedProtocolError, InvalidTransitionError)


def _get_engine():
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        logger.info(f"Initializing database engine: {settings.database_url}")

        connect_args = {}
        if "sqlite" in settings.database_url.lower():
            connect_args = {"check_same_thread": False}
            logger.warning("Using SQLite database (local development only)")
        elif "postgres" in settings.database_url.lower():
            connect_args = {
                "connect_timeout": 10,
                "application_name": "mobility-engine",
            }

        _engine = create_engine(
            settings.database_url,
            connect_args=connect_args,
            echo=False,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
        logger.info("Database engine initialized")
    return _engine


def get_engine():
    """Get or create the database engine (public API)."""
    return _get_engine()


def _get_session_local():
    """Get or create the session factory (lazy initialization).

    expire_on_commit is off so rows returned from a finished session stay readable.
    """
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=_get_engine())
        logger.info("Database session factory initialized")
    return _SessionLocal


def _handle_session_commit(session: Session) -> None:
    """Handle session commit with logging."""
    with suppress(Exception):
        logger.debug(f"Before commit: dirty={len(session.dirty)}, new={len(session.new)}, deleted={len(session.deleted)}")
    # Flushed work no longer shows in dirty/new, so commit unconditionally
    session.commit()
    logger.debug("Database session committed successfully")


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get database session context manager.

    Commits when the block finishes, rolls back and re-raises on any error.
    Business logic errors (NotFoundError, MalformedProtocolError,
    InvalidTransitionError) are re-raised without database error logging.
    """
    logger.debug("Creating new database session")
    session = _get_session_local()()
    try:
        yield session
        _handle_session_commit(session)
    except _BUSINESS_ERRORS as e:
        logger.debug(f"{type(e).__name__} in session, rolling back (business logic error, not DB error)")
        session.rollback()
        raise
    except Exception as e:
        logger.error(
            f"Database session error, rolling back: {e}. "
            f"Error type: {type(e).__name__}, session state: "
            f"dirty={len(session.dirty)}, new={len(session.new)}, deleted={len(session.deleted)}"
        )
        logger.exception("Full exception traceback:")
        session.rollback()
        raise
    finally:
        logger.debug("Closing database session")
        session.close()


def init_db() -> None:
    """Create all tables on the configured engine."""
    from mobility_engine.db.models import Base

    Base.metadata.create_all(bind=_get_engine())
    logger.info("Database schema ensured")
