"""
Database wiring: engine, session factory and declarative base.

The tables themselves live in models.py. Every request gets its own Session
from get_session(); engines call Repository.transaction() around each
mutation so a failure leaves nothing half-written.
"""

import logging
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    # Naive UTC so values compare equal before and after a SQLite round-trip
    return datetime.now(timezone.utc).replace(tzinfo=None)


def make_engine(url: str) -> Engine:
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


_engine: Optional[Engine] = None
SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        url = get_settings().database_url
        _engine = make_engine(url)
        SessionLocal.configure(bind=_engine)
        logger.info("database engine created for %s", _engine.url.render_as_string(hide_password=True))
    return _engine


def init_db(engine: Optional[Engine] = None) -> None:
    # Imported for its side effect of registering the tables on Base.metadata
    import models  # noqa: F401

    Base.metadata.create_all(engine or get_engine())


def get_session() -> Iterator[Session]:
    get_engine()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
