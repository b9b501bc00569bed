"""
Database session management (SQLAlchemy)
"""
from contextlib import contextmanager
from typing import Iterator

import psycopg
from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session

from app.config import get_settings


class Base(DeclarativeBase):
    """
    SQLAlchemy declarative base for all ORM models
    """
    pass


# Singleton engine and session factory
_engine = None
_SessionLocal = None


def get_engine():
    """Get or create SQLAlchemy engine (singleton)"""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = settings.get_sqlalchemy_url()
        _engine = create_engine(url, pool_pre_ping=True)
    return _engine


def get_session_factory():
    """Get or create session factory (singleton)"""
    global _SessionLocal
    if _SessionLocal is None:
        engine = get_engine()
        _SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    return _SessionLocal


def get_db() -> Iterator[Session]:
    """
    FastAPI dependency: opens a session and always closes it

    Usage:
        @app.get("/income-events")
        def list_income(db: Session = Depends(get_db)):
            ...
    """
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Transaction boundary for multi-row ledger mutations.

    Commits when the block finishes, rolls back and re-raises on any error,
    so a mutation either lands completely or not at all.

    Usage:
        with unit_of_work(db):
            AttributeToIncomeUseCase(db).apply(...)
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def check_db_connection() -> None:
    """
    Health check - PostgreSQL availability (raw psycopg)

    Raises:
        psycopg.OperationalError: if the database is unreachable
    """
    settings = get_settings()
    with psycopg.connect(settings.DATABASE_URL, connect_timeout=3) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1;")
            cur.fetchone()
