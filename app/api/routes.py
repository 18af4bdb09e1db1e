from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse
from loguru import logger

from app.core.config import get_settings
from app.schemas.ticket import StatusChangePayload, TicketPriority, TicketStatus, UserRef
from app.services.board import SortOrder, TicketBoard, TicketFilters, get_ticket_board
from app.services.tickets import StoreFailure, StoreResult

router = APIRouter()

FAILURE_STATUS = {
    StoreFailure.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    StoreFailure.NOT_OWNER: status.HTTP_403_FORBIDDEN,
    StoreFailure.MALFORMED_INPUT: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def _authorize_admin(token: str | None) -> None:
    settings = get_settings()
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin endpoints are disabled")
    if token != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")


def _acting_user(user_id: str | None, user_name: str | None, user_image: str | None = None) -> UserRef:
    if not user_id or not user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Sign in required")
    return UserRef(id=user_id.strip(), name=(user_name or "").strip() or "User", image=user_image)


def _unwrap(result: StoreResult[Any]) -> Any:
    if not result.ok:
        raise HTTPException(status_code=FAILURE_STATUS[result.failure], detail=result.message)
    return result.value


@router.get("/tickets")
def list_tickets(
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    priority: TicketPriority | None = None,
    project_id: str | None = None,
    team_id: str | None = None,
    assignee_id: str | None = None,
    search: str | None = None,
    sort: SortOrder = SortOrder.NEWEST,
    board: TicketBoard = Depends(get_ticket_board),
):
    filters = TicketFilters(
        status=status_filter,
        priority=priority,
        project_id=project_id,
        team_id=team_id,
        assignee_id=assignee_id,
        search=search,
        sort=sort,
    )
    resp = board.list_tickets(filters)
    return JSONResponse(content=resp.model_dump(mode="json", by_alias=True))


@router.get("/tickets/{ticket_id}")
def get_ticket(ticket_id: str, board: TicketBoard = Depends(get_ticket_board)):
    view = _unwrap(board.get(ticket_id))
    return JSONResponse(content=view.model_dump(mode="json", by_alias=True))


@router.post("/tickets", status_code=status.HTTP_201_CREATED)
def create_ticket(
    payload: Dict[str, Any] = Body(...),
    board: TicketBoard = Depends(get_ticket_board),
    x_user_id: str | None = Header(default=None, alias="x-user-id"),
    x_user_name: str | None = Header(default=None, alias="x-user-name"),
    x_user_image: str | None = Header(default=None, alias="x-user-image"),
):
    user = _acting_user(x_user_id, x_user_name, x_user_image)
    view = _unwrap(board.submit(payload, user))
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=view.model_dump(mode="json", by_alias=True))


@router.patch("/tickets/{ticket_id}")
def edit_ticket(
    ticket_id: str,
    payload: Dict[str, Any] = Body(...),
    board: TicketBoard = Depends(get_ticket_board),
    x_user_id: str | None = Header(default=None, alias="x-user-id"),
):
    user = _acting_user(x_user_id, None)
    view = _unwrap(board.edit(ticket_id, payload, user.id))
    return JSONResponse(content=view.model_dump(mode="json", by_alias=True))


@router.post("/tickets/{ticket_id}/status")
def change_status(
    ticket_id: str,
    payload: StatusChangePayload,
    board: TicketBoard = Depends(get_ticket_board),
    x_user_id: str | None = Header(default=None, alias="x-user-id"),
):
    user = _acting_user(x_user_id, None)
    view = _unwrap(board.change_status(ticket_id, payload.status, user.id))
    return JSONResponse(content=view.model_dump(mode="json", by_alias=True))


@router.delete("/tickets/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_ticket(
    ticket_id: str,
    board: TicketBoard = Depends(get_ticket_board),
    x_user_id: str | None = Header(default=None, alias="x-user-id"),
):
    user = _acting_user(x_user_id, None)
    _unwrap(board.remove(ticket_id, user.id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/admin/tickets/deduplicate")
def deduplicate_tickets(
    board: TicketBoard = Depends(get_ticket_board),
    x_admin_token: str | None = Header(default=None, alias="x-admin-token"),
):
    _authorize_admin(x_admin_token)
    tickets = board.store.deduplicate()
    return {"count": len(tickets), "ids": [ticket.id for ticket in tickets]}


@router.post("/admin/tickets/reset")
def reset_tickets(
    board: TicketBoard = Depends(get_ticket_board),
    x_admin_token: str | None = Header(default=None, alias="x-admin-token"),
):
    _authorize_admin(x_admin_token)
    board.store.reset()
    logger.warning("Ticket storage reset through admin endpoint")
    return {"status": "reset"}


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
