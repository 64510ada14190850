"""Database configuration and session dependency."""

from typing import Iterator

from sqlmodel import Session, SQLModel, create_engine

from smartprep.config import get_settings


def make_engine(url: str, echo: bool = False):
    """Build an engine; SQLite connections are shared across request threads."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=echo, connect_args=connect_args)


_settings = get_settings()
engine = make_engine(_settings.database_url, echo=_settings.sql_echo)


def create_db_and_tables() -> None:
    """Create database tables based on SQLModel metadata."""
    # models must be imported so their tables are registered on the metadata
    from smartprep import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Iterator[Session]:
    """FastAPI dependency that yields a database session."""
    with Session(engine) as session:
        yield session
