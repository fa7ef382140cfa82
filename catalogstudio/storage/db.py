"""SQLAlchemy engine, session factory and the database health probe."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, Generator, Optional, Tuple

from sqlalchemy import MetaData, create_engine, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from catalogstudio.core.config import get_settings


NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
}
_IN_MEMORY_SQLITE_URLS = {"sqlite://", "sqlite:///:memory:", "sqlite+pysqlite://", "sqlite+pysqlite:///:memory:"}

Base = declarative_base(metadata=MetaData(naming_convention=NAMING_CONVENTION))


def engine_options(database_url: str) -> Dict[str, Any]:
    """In-memory SQLite shares one connection so every session sees the same database."""

    options: Dict[str, Any] = {"pool_pre_ping": True, "future": True}
    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if database_url in _IN_MEMORY_SQLITE_URLS:
            options["poolclass"] = StaticPool
    return options


@lru_cache(maxsize=1)
def get_engine():
    database_url = get_settings().database_url
    return create_engine(database_url, **engine_options(database_url))


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, expire_on_commit=False)


def get_session() -> Generator[Session, None, None]:
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def test_connection() -> Tuple[bool, Optional[str]]:
    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
        return True, None
    except Exception as exc:
        return False, str(exc)


def load_models() -> None:
    """Import ORM models so Base metadata contains every generation table."""

    import catalogstudio.storage.models  # noqa: F401
