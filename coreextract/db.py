from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from coreextract.core.config import settings
from coreextract.services.exceptions import TransientStoreError


def _connect_args(database_url: str) -> dict[str, Any]:
    backend = make_url(database_url).get_backend_name()
    if backend == "sqlite":
        return {"timeout": settings.db_connect_timeout_seconds, "check_same_thread": False}
    if backend == "postgresql":
        return {
            "connect_timeout": settings.db_connect_timeout_seconds,
            "options": f"-c statement_timeout={settings.db_statement_timeout_ms}",
        }
    return {}


def _engine_kwargs(database_url: str) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "future": True,
        "echo": settings.db_echo,
        "pool_pre_ping": True,
        "connect_args": _connect_args(database_url),
    }
    if make_url(database_url).get_backend_name() != "sqlite":
        kwargs.update(pool_size=10, max_overflow=20, pool_timeout=settings.db_pool_timeout_seconds)
    return kwargs


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))

SessionLocal = sessionmaker(bind=engine, autoflush=False, future=True)


if engine.dialect.name == "sqlite":

    # Cascade delete of job files relies on FK enforcement, which sqlite leaves off.
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()


def get_db() -> Iterator[Session]:
    """FastAPI dependency: yields a session and closes it after the request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create all tables. Idempotent."""
    from coreextract.models import Base

    Base.metadata.create_all(bind=engine)


@contextmanager
def store_errors(db: Session | None = None) -> Iterator[None]:
    """Translate connection/timeout failures into TransientStoreError.

    The session (if given) is rolled back so the caller can retry the whole
    operation on the same session.
    """
    try:
        yield
    except (OperationalError, PoolTimeoutError) as exc:
        if db is not None:
            db.rollback()
        raise TransientStoreError(str(exc.orig) if getattr(exc, "orig", None) else str(exc)) from exc
