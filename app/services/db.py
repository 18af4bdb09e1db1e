from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import get_settings
from app.models.base import Base
from app.models.storage_entry import StorageEntry  # noqa: F401


def build_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    is_sqlite = url.drivername.startswith("sqlite")

    if is_sqlite and url.database and url.database != ":memory:":
        db_path = Path(url.database).expanduser()
        if db_path.parent:
            db_path.parent.mkdir(parents=True, exist_ok=True)
        # Rebuild URL so SQLAlchemy can handle relative paths nicely
        database_url = f"sqlite:///{db_path}"

    engine = create_engine(
        database_url,
        echo=False,
        connect_args={"check_same_thread": False} if is_sqlite else {},
    )
    if is_sqlite:
        _begin_immediate(engine)
    return engine


def _begin_immediate(engine: Engine) -> None:
    """Make every SQLite transaction take the write lock before its first read.

    pysqlite otherwise defers BEGIN until the first write, so two writers could
    both read the same serial counter.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@lru_cache
def get_engine() -> Engine:
    return build_engine(get_settings().database_url)


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    return build_session_factory(get_engine())


def init_db(engine: Engine | None = None) -> None:
    Base.metadata.create_all(bind=engine or get_engine())


@contextmanager
def db_session(factory: sessionmaker[Session] | None = None) -> Generator[Session, None, None]:
    session: Session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
