from __future__ import annotations

import re
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.utils.time import parse_due_date


class TicketStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    REVIEW = "REVIEW"
    DONE = "DONE"


class TicketPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"

    @property
    def rank(self) -> int:
        return list(TicketPriority).index(self)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserRef(CamelModel):
    id: str
    name: str = ""
    image: str | None = None


class ProjectRef(CamelModel):
    id: str
    name: str = ""


class TeamRef(CamelModel):
    id: str
    name: str = ""


def normalize_tags(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    tags: list[str] = []
    for item in value:
        tag = str(item).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class TicketInput(CamelModel):
    """Everything a caller supplies when creating a ticket."""

    title: str
    description: str | None = None
    priority: TicketPriority = TicketPriority.MEDIUM
    created_by: UserRef
    assignee: UserRef | None = None
    assigned_by: UserRef | None = None
    project: ProjectRef | None = None
    team: TeamRef | None = None
    due_date: date | None = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> list[str]:
        return normalize_tags(value)


class Ticket(TicketInput):
    id: str
    serial_number: int = Field(gt=0)
    status: TicketStatus = TicketStatus.TODO
    created_at: datetime
    updated_at: datetime
    # Presentation only; never part of the stored record.
    is_updated: bool = Field(default=False, exclude=True)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TicketView(Ticket):
    is_updated: bool = False


_CLEARABLE_FIELDS = frozenset({"description", "assignee", "assigned_by", "project", "team", "due_date"})


class TicketPatch(CamelModel):
    """Partial update. Only fields explicitly set are applied."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    title: str | None = None
    description: str | None = None
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    assignee: UserRef | None = None
    assigned_by: UserRef | None = None
    project: ProjectRef | None = None
    team: TeamRef | None = None
    due_date: date | None = None
    tags: list[str] | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> list[str]:
        return normalize_tags(value)

    def changes(self) -> dict[str, Any]:
        # An explicit null clears an optional field but is ignored for required ones.
        return {
            field: value
            for field, value in self.model_dump(exclude_unset=True).items()
            if value is not None or field in _CLEARABLE_FIELDS
        }


def person_from_name(name: str | None) -> UserRef | None:
    """A free-typed name becomes a stable identity: "Bob" is always ``person-bob``."""
    if not name or not name.strip():
        return None
    name = " ".join(name.split())
    slug = re.sub(r"\W+", "-", name.lower()).strip("-_") or "unknown"
    return UserRef(id=f"person-{slug}", name=name)


def _clean_title(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("title is required")
    return value.strip()


class TicketForm(CamelModel):
    """Payload of the create-ticket form."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    title: str
    description: str | None = None
    priority: TicketPriority = TicketPriority.MEDIUM
    assignee: UserRef | None = None
    assignee_name: str | None = None
    assigned_by: UserRef | None = None
    assigned_by_name: str | None = None
    project: ProjectRef | None = None
    team: TeamRef | None = None
    due_date: date | None = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def _ensure_title(cls, value: str) -> str:
        return _clean_title(value)

    @field_validator("due_date", mode="before")
    @classmethod
    def _parse_due_date(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_due_date(value)
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> list[str]:
        return normalize_tags(value)

    def to_input(self, created_by: UserRef) -> TicketInput:
        return TicketInput(
            title=self.title,
            description=self.description or None,
            priority=self.priority,
            created_by=created_by,
            assignee=self.assignee or person_from_name(self.assignee_name),
            assigned_by=self.assigned_by or person_from_name(self.assigned_by_name),
            project=self.project,
            team=self.team,
            due_date=self.due_date,
            tags=self.tags,
        )


class TicketEditForm(TicketPatch):
    """Payload of the edit-ticket form."""

    @field_validator("title")
    @classmethod
    def _ensure_title(cls, value: str | None) -> str | None:
        if value is None:
            return value
        return _clean_title(value)

    @field_validator("due_date", mode="before")
    @classmethod
    def _parse_due_date(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_due_date(value)
        return value


class StatusChangePayload(BaseModel):
    status: TicketStatus


class TicketListResponse(BaseModel):
    tickets: list[TicketView]
    counts: dict[str, int]
