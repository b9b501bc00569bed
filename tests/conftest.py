"""
Pytest fixtures for testing
"""
import pytest
from sqlalchemy import create_engine, JSON
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.dialects.postgresql import JSONB

from app.infrastructure.db.session import Base
from app.infrastructure.db import models  # noqa: F401  registers the tables


def _remap_jsonb():
    # SQLite has no JSONB, remap to JSON for tests
    for table in Base.metadata.tables.values():
        for col in table.columns:
            if isinstance(col.type, JSONB):
                col.type = JSON()


@pytest.fixture
def db_engine():
    """Create in-memory SQLite engine for tests, with JSONB→JSON mapping."""
    engine = create_engine("sqlite:///:memory:")
    _remap_jsonb()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    """Create database session for tests"""
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """
    Session factory over a file-backed SQLite database.

    Separate sessions get separate connections, so two sessions can
    interleave like two concurrent requests.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    _remap_jsonb()
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


@pytest.fixture
def shared_session_factory():
    """
    Session factory over one shared in-memory SQLite connection.

    Used by API tests, where requests run in a worker thread.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _remap_jsonb()
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture
def family_id():
    """Family owning the test data"""
    return 1


@pytest.fixture
def other_family_id():
    """A second family, for cross-family checks"""
    return 2
