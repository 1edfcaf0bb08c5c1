"""Root conftest for all tests.

This file makes shared fixtures available across all test modules.
"""

from contextlib import contextmanager

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

# Every module that does `from mobility_engine.db.session import get_session`
# holds its own reference, so each one is patched
_GET_SESSION_MODULES = (
    "mobility_engine.db.session",
    "mobility_engine.risk.repository",
    "mobility_engine.protocols.engine",
    "mobility_engine.protocols.matcher",
    "mobility_engine.alerts.repository",
    "mobility_engine.personalization.fatigue",
    "mobility_engine.personalization.progression",
)


# Enable foreign key constraints for SQLite
@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key constraints in SQLite connections."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture(scope="session", autouse=True)
def ensure_models_imported():
    """Ensure all models are imported so SQLAlchemy metadata is complete."""
    from mobility_engine.db.models import Base

    assert "patient_protocol_assignments" in Base.metadata.tables, "Assignment model not registered in Base.metadata"
    yield


@pytest.fixture
def test_patient_id() -> str:
    """Stable patient ID for tests."""
    return "patient-001"


@pytest.fixture(scope="function")
def db_session(monkeypatch):
    """
    Provides a transactional in-memory SQLite DB session for tests.

    This fixture:
    - Creates an isolated in-memory SQLite database per test
    - Patches the engine getters to use SQLite
    - Patches get_session() to yield the test session, flushing where the
      real context manager would commit
    - Uses transaction rollback for cleanup

    Usage:
        def test_something(db_session):
            db_session.add(PatientProfile(...))
            db_session.commit()
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
    )

    def mock_get_engine():
        return engine

    monkeypatch.setattr("mobility_engine.db.session._get_engine", mock_get_engine)
    monkeypatch.setattr("mobility_engine.db.session.get_engine", mock_get_engine)

    from mobility_engine.db.models import Base

    Base.metadata.create_all(engine)

    connection = engine.connect()
    transaction = connection.begin()

    test_session_local = sessionmaker(bind=connection, autocommit=False, autoflush=False, expire_on_commit=False)
    session = test_session_local()

    @contextmanager
    def mock_get_session():
        yield session
        session.flush()

    for module_name in _GET_SESSION_MODULES:
        monkeypatch.setattr(f"{module_name}.get_session", mock_get_session)

    try:
        yield session
    finally:
        session.rollback()
        if transaction.is_active:
            transaction.rollback()
        session.close()
        connection.close()
        engine.dispose()
