from __future__ import annotations

from app.schemas.ticket import Ticket

NOT_OWNER_MESSAGE = "You can only modify tickets you created"


def can_modify_ticket(ticket: Ticket, acting_user_id: str | None) -> bool:
    """Only the creator may edit, change status of, or delete a ticket.

    An anonymous actor never owns anything. There is no administrator override.
    """
    if not acting_user_id:
        return False
    return ticket.created_by.id == acting_user_id
