from __future__ import annotations

import threading
from contextlib import AbstractContextManager, contextmanager
from typing import Iterator, Protocol, runtime_checkable

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.models.storage_entry import StorageEntry
from app.services.db import db_session


class StorageBackendError(RuntimeError):
    """Raised by a backend when a read or write cannot be completed."""


@runtime_checkable
class KeyValueStorage(Protocol):
    """Synchronous string key-value store.

    ``atomic()`` groups several writes so that either all of them land or none
    do. Nested ``atomic()`` blocks join the outer one.
    """

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def atomic(self) -> AbstractContextManager[None]: ...


class MemoryStorage:
    def __init__(self, initial: dict[str, str] | None = None, *, quota_bytes: int | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self.quota_bytes = quota_bytes
        self.disabled = False
        self._depth = 0

    def _check_enabled(self) -> None:
        if self.disabled:
            raise StorageBackendError("storage is disabled")

    def get(self, key: str) -> str | None:
        self._check_enabled()
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._check_enabled()
        if self.quota_bytes is not None:
            used = sum(len(k) + len(v) for k, v in self._data.items() if k != key)
            if used + len(key) + len(value) > self.quota_bytes:
                raise StorageBackendError(f"quota of {self.quota_bytes} bytes exceeded writing {key!r}")
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._check_enabled()
        self._data.pop(key, None)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        snapshot = dict(self._data)
        self._depth += 1
        try:
            yield
        except Exception:
            if self._depth == 1:
                self._data = snapshot
            raise
        finally:
            self._depth -= 1

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class SqlStorage:
    """Key-value storage on the ``storage_entry`` table.

    Reads lock the row they touch (``SELECT ... FOR UPDATE``) and SQLite
    transactions open with ``BEGIN IMMEDIATE`` (see ``build_engine``), so an
    ``atomic()`` unit that reads then writes never interleaves with another one.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._factory = session_factory
        self._local = threading.local()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if getattr(self._local, "session", None) is not None:
            yield
            return

        try:
            with db_session(self._factory) as session:
                self._local.session = session
                try:
                    yield
                finally:
                    self._local.session = None
        except SQLAlchemyError as exc:
            logger.warning("Storage transaction failed: {error}", error=exc)
            raise StorageBackendError(str(exc)) from exc

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self.atomic():
            yield self._local.session

    @staticmethod
    def _locked_entry(session: Session, key: str) -> StorageEntry | None:
        stmt = select(StorageEntry).where(StorageEntry.key == key).with_for_update()
        return session.scalars(stmt).first()

    def get(self, key: str) -> str | None:
        with self._session() as session:
            entry = self._locked_entry(session, key)
            return entry.value if entry else None

    def set(self, key: str, value: str) -> None:
        with self._session() as session:
            entry = self._locked_entry(session, key)
            if entry:
                entry.value = value
            else:
                session.add(StorageEntry(key=key, value=value))
            session.flush()

    def delete(self, key: str) -> None:
        with self._session() as session:
            entry = self._locked_entry(session, key)
            if entry:
                session.delete(entry)
                session.flush()
