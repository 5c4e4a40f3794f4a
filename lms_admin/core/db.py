"""SQLAlchemy engine and session factory."""
from __future__ import annotations
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()

SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Create an engine for ``database_url`` and bind the session factory to it.

    SQLite connections get foreign keys enabled so ``ON DELETE CASCADE`` on
    the join tables behaves as it does on PostgreSQL. In-memory SQLite uses a
    single shared connection.
    """
    kwargs: dict = {"echo": echo, "future": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(database_url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    SessionLocal.configure(bind=engine)
    return engine


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    # Models must be imported so their tables are registered on Base.metadata
    from lms_admin.core import models  # noqa: F401

    Base.metadata.create_all(engine)


def ping(engine: Engine) -> bool:
    """Return True when the database answers a trivial query."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return True


@contextmanager
def session_scope(engine: Optional[Engine] = None) -> Iterator[Session]:
    """Provide a session that is closed on exit (used by the CLI)."""
    session = SessionLocal(bind=engine) if engine is not None else SessionLocal()
    try:
        yield session
    finally:
        session.close()
