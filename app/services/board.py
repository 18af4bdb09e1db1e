from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from functools import lru_cache
from typing import Any, Mapping

from loguru import logger
from pydantic import ValidationError

from app.core.config import get_settings
from app.schemas.ticket import (
    Ticket,
    TicketEditForm,
    TicketForm,
    TicketListResponse,
    TicketPriority,
    TicketStatus,
    TicketView,
    UserRef,
)
from app.services.db import get_session_factory
from app.services.pulse import UpdatePulseTracker
from app.services.storage import SqlStorage
from app.services.tickets import StoreFailure, StoreResult, TicketStore, build_ticket_store


class SortOrder(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    PRIORITY = "priority"
    DUE = "due"


@dataclass
class TicketFilters:
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    project_id: str | None = None
    team_id: str | None = None
    assignee_id: str | None = None
    search: str | None = None
    sort: SortOrder = SortOrder.NEWEST

    def matches(self, ticket: Ticket, *, ignore_status: bool = False) -> bool:
        if not ignore_status and self.status and ticket.status != self.status:
            return False
        if self.priority and ticket.priority != self.priority:
            return False
        if self.project_id and (ticket.project is None or ticket.project.id != self.project_id):
            return False
        if self.team_id and (ticket.team is None or ticket.team.id != self.team_id):
            return False
        if self.assignee_id and (ticket.assignee is None or ticket.assignee.id != self.assignee_id):
            return False
        if self.search:
            needle = self.search.strip().lower()
            haystack = " ".join([ticket.title, ticket.description or "", *ticket.tags]).lower()
            if needle not in haystack:
                return False
        return True


def sort_tickets(tickets: list[Ticket], order: SortOrder) -> list[Ticket]:
    match order:
        case SortOrder.OLDEST:
            return sorted(tickets, key=lambda t: t.serial_number)
        case SortOrder.PRIORITY:
            return sorted(tickets, key=lambda t: (t.priority.rank, t.serial_number), reverse=True)
        case SortOrder.DUE:
            return sorted(
                tickets,
                key=lambda t: (t.due_date is None, t.due_date or date.max, -t.serial_number),
            )
        case _:
            return sorted(tickets, key=lambda t: t.serial_number, reverse=True)


class TicketBoard:
    """What the ticket list and ticket forms do on top of the store.

    Payload validation, filtering, sorting and the transient update highlight
    live here. Ownership is re-checked by the store on every mutation.
    """

    def __init__(self, store: TicketStore, pulse: UpdatePulseTracker) -> None:
        self.store = store
        self.pulse = pulse

    def _view(self, ticket: Ticket) -> TicketView:
        return TicketView(**ticket.model_dump(), is_updated=self.pulse.is_active(ticket.id))

    def list_tickets(self, filters: TicketFilters | None = None) -> TicketListResponse:
        filters = filters or TicketFilters()
        tickets = self.store.list_all()

        scoped = [t for t in tickets if filters.matches(t, ignore_status=True)]
        counts = {"all": len(scoped)}
        for status in TicketStatus:
            counts[status.value] = sum(1 for t in scoped if t.status == status)

        visible = [t for t in scoped if filters.matches(t)]
        return TicketListResponse(
            tickets=[self._view(t) for t in sort_tickets(visible, filters.sort)],
            counts=counts,
        )

    def get(self, ticket_id: str) -> StoreResult[TicketView]:
        ticket = self.store.get(ticket_id)
        if ticket is None:
            return StoreResult.fail(StoreFailure.NOT_FOUND, f"Ticket {ticket_id} not found")
        return StoreResult.success(self._view(ticket))

    def submit(self, payload: TicketForm | Mapping[str, Any], user: UserRef | None) -> StoreResult[TicketView]:
        if user is None:
            return StoreResult.fail(StoreFailure.NOT_OWNER, "You must be signed in to create tickets")

        try:
            form = payload if isinstance(payload, TicketForm) else TicketForm.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Rejected ticket form: {error}", error=exc)
            return StoreResult.fail(StoreFailure.MALFORMED_INPUT, str(exc))

        ticket = self.store.create(form.to_input(created_by=user))
        return StoreResult.success(self._view(ticket))

    def edit(
        self,
        ticket_id: str,
        payload: TicketEditForm | Mapping[str, Any],
        acting_user_id: str | None,
    ) -> StoreResult[TicketView]:
        try:
            form = payload if isinstance(payload, TicketEditForm) else TicketEditForm.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Rejected ticket edit for {ticket_id}: {error}", ticket_id=ticket_id, error=exc)
            return StoreResult.fail(StoreFailure.MALFORMED_INPUT, str(exc))

        result = self.store.update(ticket_id, form, acting_user_id)
        if not result.ok:
            return StoreResult.fail(result.failure, result.message)

        self.pulse.mark(ticket_id)
        return StoreResult.success(self._view(result.value))

    def change_status(
        self, ticket_id: str, status: TicketStatus, acting_user_id: str | None
    ) -> StoreResult[TicketView]:
        return self.edit(ticket_id, TicketEditForm(status=status), acting_user_id)

    def remove(self, ticket_id: str, acting_user_id: str | None) -> StoreResult[None]:
        result = self.store.delete(ticket_id, acting_user_id)
        if result.ok:
            self.pulse.forget(ticket_id)
        return result


@lru_cache
def get_ticket_board() -> TicketBoard:
    settings = get_settings()
    storage = SqlStorage(get_session_factory())
    return TicketBoard(
        store=build_ticket_store(storage),
        pulse=UpdatePulseTracker(window_seconds=settings.update_pulse_seconds),
    )
