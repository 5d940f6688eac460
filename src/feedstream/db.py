from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from functools import lru_cache
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import Settings, get_settings

SessionFactory = Callable[[], AbstractContextManager[Session]]


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@lru_cache(maxsize=8)
def _engine_for_url(db_url: str) -> Engine:
    connect_args = {}
    if db_url.startswith("sqlite"):
        # Shared by batch worker threads.
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 30
    engine = create_engine(db_url, future=True, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def get_engine(settings: Settings | None = None) -> Engine:
    active_settings = settings or get_settings()
    return _engine_for_url(active_settings.db_url)


@lru_cache(maxsize=8)
def _sessionmaker_for_url(db_url: str) -> sessionmaker[Session]:
    engine = _engine_for_url(db_url)
    return sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def _ensure_sqlite_parent(db_url: str) -> None:
    if not db_url.startswith("sqlite:///"):
        return
    path = db_url.removeprefix("sqlite:///")
    if not path or path == ":memory:":
        return
    parent = Path(path).parent
    parent.mkdir(parents=True, exist_ok=True)


def init_db(settings: Settings | None = None) -> None:
    active_settings = settings or get_settings()
    _ensure_sqlite_parent(active_settings.db_url)

    from . import models  # noqa: F401

    Base.metadata.create_all(bind=get_engine(active_settings))


@contextmanager
def session_scope(settings: Settings | None = None) -> Iterator[Session]:
    active_settings = settings or get_settings()
    SessionLocal = _sessionmaker_for_url(active_settings.db_url)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def session_factory(settings: Settings | None = None) -> SessionFactory:
    """Bind ``session_scope`` to one settings object so workers can open their own sessions."""

    active_settings = settings or get_settings()

    def factory() -> AbstractContextManager[Session]:
        return session_scope(active_settings)

    return factory
