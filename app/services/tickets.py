from __future__ import annotations

import json
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Generic, Iterator, Mapping, TypeVar

from loguru import logger
from nanoid import generate
from pydantic import ValidationError

from app.core.config import get_settings
from app.schemas.ticket import Ticket, TicketInput, TicketPatch, TicketStatus
from app.services.access import NOT_OWNER_MESSAGE, can_modify_ticket
from app.services.storage import KeyValueStorage, StorageBackendError
from app.utils.time import utcnow

T = TypeVar("T")


class StoreFailure(str, Enum):
    NOT_FOUND = "not_found"
    NOT_OWNER = "not_owner"
    MALFORMED_INPUT = "malformed_input"


class StorageUnavailableError(RuntimeError):
    """The durable storage could not be read or written. Nothing was changed."""

    user_message = "Could not save: storage unavailable"


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    value: T | None = None
    failure: StoreFailure | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T | None = None) -> "StoreResult[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, failure: StoreFailure, message: str) -> "StoreResult[T]":
        return cls(failure=failure, message=message)


def generate_ticket_id() -> str:
    return f"ticket-{int(time.time() * 1000)}-{generate(size=12)}"


def first_occurrences(tickets: list[Ticket]) -> list[Ticket]:
    seen: set[str] = set()
    unique: list[Ticket] = []
    for ticket in tickets:
        if ticket.id in seen:
            continue
        seen.add(ticket.id)
        unique.append(ticket)
    return unique


class TicketStore:
    """Durable ticket collection on top of a key-value storage backend.

    The collection and the serial counter live under two separate keys. Every
    operation runs under one lock and one ``storage.atomic()`` unit, so the
    counter only advances together with the ticket that consumed it.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        tickets_key: str = "tickets",
        counter_key: str = "ticket-serial-counter",
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = generate_ticket_id,
    ) -> None:
        self.storage = storage
        self.tickets_key = tickets_key
        self.counter_key = counter_key
        self._clock = clock
        self._id_factory = id_factory
        self._lock = threading.RLock()

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        with self._lock:
            try:
                with self.storage.atomic():
                    yield
            except StorageBackendError as exc:
                logger.error("Ticket storage unavailable: {error}", error=exc)
                raise StorageUnavailableError(str(exc)) from exc

    def _load(self) -> list[Ticket]:
        raw = self.storage.get(self.tickets_key)
        if raw is None:
            return []
        try:
            records = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageUnavailableError(f"Stored tickets are not valid JSON: {exc}") from exc
        if not isinstance(records, list):
            raise StorageUnavailableError("Stored tickets are not a list")
        for record in records:
            if isinstance(record, dict):
                record.pop("isUpdated", None)
        try:
            return [Ticket.model_validate(record) for record in records]
        except ValidationError as exc:
            raise StorageUnavailableError(f"Stored ticket record is invalid: {exc}") from exc

    def _save(self, tickets: list[Ticket]) -> None:
        self.storage.set(self.tickets_key, json.dumps([ticket.to_record() for ticket in tickets]))

    def _read_counter(self) -> int:
        raw = self.storage.get(self.counter_key)
        if raw is None:
            return 0
        try:
            counter = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageUnavailableError(f"Stored serial counter is not valid JSON: {exc}") from exc
        if not isinstance(counter, int) or isinstance(counter, bool) or counter < 0:
            raise StorageUnavailableError(f"Stored serial counter is invalid: {raw!r}")
        return counter

    @staticmethod
    def _find(tickets: list[Ticket], ticket_id: str) -> int | None:
        for index, ticket in enumerate(tickets):
            if ticket.id == ticket_id:
                return index
        return None

    def list_all(self) -> list[Ticket]:
        with self._transaction():
            tickets = self._load()
        return first_occurrences(tickets)

    def get(self, ticket_id: str) -> Ticket | None:
        with self._transaction():
            tickets = self._load()
        index = self._find(tickets, ticket_id)
        return tickets[index] if index is not None else None

    def current_serial(self) -> int:
        with self._transaction():
            return self._read_counter()

    def create(self, ticket_input: TicketInput) -> Ticket:
        with self._transaction():
            tickets = self._load()

            existing_ids = {ticket.id for ticket in tickets}
            ticket_id = self._id_factory()
            while ticket_id in existing_ids:
                ticket_id = self._id_factory()

            # A lost or stale counter must still never hand out a serial already in use.
            highest = max((ticket.serial_number for ticket in tickets), default=0)
            serial = max(self._read_counter(), highest) + 1

            now = self._clock()
            ticket = Ticket(
                **ticket_input.model_dump(),
                id=ticket_id,
                serial_number=serial,
                status=TicketStatus.TODO,
                created_at=now,
                updated_at=now,
            )

            self.storage.set(self.counter_key, json.dumps(serial))
            self._save([ticket, *tickets])

        logger.info(
            "Created ticket #{serial} id={ticket_id} by {owner}",
            serial=serial,
            ticket_id=ticket_id,
            owner=ticket.created_by.id,
        )
        return ticket

    def update(
        self,
        ticket_id: str,
        patch: TicketPatch | Mapping[str, Any],
        acting_user_id: str | None,
    ) -> StoreResult[Ticket]:
        if not isinstance(patch, TicketPatch):
            try:
                patch = TicketPatch.model_validate(patch)
            except ValidationError as exc:
                return StoreResult.fail(StoreFailure.MALFORMED_INPUT, str(exc))

        with self._transaction():
            tickets = self._load()
            index = self._find(tickets, ticket_id)
            if index is None:
                return StoreResult.fail(StoreFailure.NOT_FOUND, f"Ticket {ticket_id} not found")

            current = tickets[index]
            if not can_modify_ticket(current, acting_user_id):
                logger.warning(
                    "Rejected update of ticket {ticket_id} by {actor}",
                    ticket_id=ticket_id,
                    actor=acting_user_id,
                )
                return StoreResult.fail(StoreFailure.NOT_OWNER, NOT_OWNER_MESSAGE)

            changes = patch.changes()
            updated = Ticket.model_validate({**current.model_dump(), **changes, "updated_at": self._clock()})
            tickets[index] = updated
            self._save(tickets)

        logger.info(
            "Updated ticket {ticket_id} fields={fields}",
            ticket_id=ticket_id,
            fields=sorted(changes),
        )
        updated.is_updated = True
        return StoreResult.success(updated)

    def delete(self, ticket_id: str, acting_user_id: str | None) -> StoreResult[None]:
        with self._transaction():
            tickets = self._load()
            index = self._find(tickets, ticket_id)
            if index is None:
                return StoreResult.fail(StoreFailure.NOT_FOUND, f"Ticket {ticket_id} not found")

            if not can_modify_ticket(tickets[index], acting_user_id):
                logger.warning(
                    "Rejected delete of ticket {ticket_id} by {actor}",
                    ticket_id=ticket_id,
                    actor=acting_user_id,
                )
                return StoreResult.fail(StoreFailure.NOT_OWNER, NOT_OWNER_MESSAGE)

            self._save([ticket for ticket in tickets if ticket.id != ticket_id])

        logger.info("Deleted ticket {ticket_id}", ticket_id=ticket_id)
        return StoreResult.success()

    def deduplicate(self) -> list[Ticket]:
        """Repair a collection holding several records with one id.

        The earliest record in stored order survives.
        """
        with self._transaction():
            tickets = self._load()
            unique = first_occurrences(tickets)
            self._save(unique)

        removed = len(tickets) - len(unique)
        if removed:
            logger.warning("Removed {count} duplicate tickets", count=removed)
        return unique

    def reset(self) -> None:
        with self._transaction():
            self.storage.delete(self.tickets_key)
            self.storage.delete(self.counter_key)
            self._save([])
        logger.warning("Ticket storage reset")


def build_ticket_store(storage: KeyValueStorage) -> TicketStore:
    tickets_key, counter_key = get_settings().storage_keys
    return TicketStore(storage, tickets_key=tickets_key, counter_key=counter_key)
