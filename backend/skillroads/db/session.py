"""Engine and session helpers for the progression persistence layer.

The engine is created lazily from :class:`~skillroads.config.Settings` and shared
by every request thread. Writes go through :func:`session_scope`, which commits
on success and rolls back on any error, so a version conflict raised inside the
block leaves no partial progress behind.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import Settings, get_settings

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None
_engine_lock = threading.Lock()


def _is_in_memory_sqlite(database_url: str) -> bool:
    return database_url in {"sqlite://", "sqlite:///:memory:"}


def _engine_options(settings: Settings, database_url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.database_echo, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if _is_in_memory_sqlite(database_url):
            # one connection, otherwise every checkout sees an empty database
            options["poolclass"] = StaticPool
    else:
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
    return options


def _enforce_sqlite_foreign_keys(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(settings: Settings) -> Engine:
    database_url = settings.database_url
    if not database_url:
        raise RuntimeError(
            "SKILLROADS_DATABASE_URL must be configured when SKILLROADS_PERSISTENCE_MODE=database."
        )
    engine = create_engine(database_url, **_engine_options(settings, database_url))
    if engine.dialect.name == "sqlite":
        _enforce_sqlite_foreign_keys(engine)
    return engine


def get_engine() -> Engine:
    global _engine, _session_factory
    with _engine_lock:
        if _engine is None:
            engine = build_engine(get_settings())
            _session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
            _engine = engine
        return _engine


def get_session_factory() -> sessionmaker[Session]:
    get_engine()
    assert _session_factory is not None
    return _session_factory


@contextmanager
def session_scope(*, read_only: bool = False) -> Generator[Session, None, None]:
    """Yield a session bound to one transaction.

    ``read_only`` scopes never commit; closing the session ends their
    transaction without expiring the rows already loaded.
    """
    session = get_session_factory()()
    try:
        yield session
        if not read_only:
            session.commit()
    except Exception:  # noqa: BLE001
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engine() -> None:
    global _engine, _session_factory
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None
        _session_factory = None


__all__ = [
    "build_engine",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "session_scope",
]
