"""Database engine and session management."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .settings import settings


Base = declarative_base()

engine: Engine | None = None
SessionLocal: sessionmaker[Session] | None = None


def build_engine(db_url: str) -> Engine:
    """Create an engine, sharing one connection for in-memory SQLite."""

    url = make_url(db_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(db_url, future=True)
    if url.database in (None, "", ":memory:"):
        return create_engine(
            db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
    return create_engine(db_url, connect_args={"check_same_thread": False}, future=True)


def configure_engine(db_url: str | None = None) -> None:
    """Initialize SQLAlchemy engine/sessionmaker for the given database URL."""

    global engine, SessionLocal
    engine = build_engine(db_url or settings.db_url)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def ensure_db_dir() -> None:
    """Create database parent directory when the default file URL is used."""

    url = make_url(settings.db_url)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return
    Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def get_session() -> Generator[Session, None, None]:
    """Yield a database session dependency."""

    if SessionLocal is None:
        configure_engine()
    assert SessionLocal is not None
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
