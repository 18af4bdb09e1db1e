from .ticket import (
    ProjectRef,
    StatusChangePayload,
    TeamRef,
    Ticket,
    TicketEditForm,
    TicketForm,
    TicketInput,
    TicketListResponse,
    TicketPatch,
    TicketPriority,
    TicketStatus,
    TicketView,
    UserRef,
)

__all__ = [
    "ProjectRef",
    "StatusChangePayload",
    "TeamRef",
    "Ticket",
    "TicketEditForm",
    "TicketForm",
    "TicketInput",
    "TicketListResponse",
    "TicketPatch",
    "TicketPriority",
    "TicketStatus",
    "TicketView",
    "UserRef",
]
