from __future__ import annotations

import json
from datetime import date

import pytest

from app.schemas.ticket import ProjectRef, TeamRef, Ticket, TicketInput, TicketPatch, TicketStatus, UserRef
from app.services.access import NOT_OWNER_MESSAGE, can_modify_ticket
from app.services.storage import MemoryStorage
from app.services.tickets import StorageUnavailableError, StoreFailure, TicketStore

from conftest import ALICE, BOB, FakeClock, make_input


def test_create_assigns_identity_serial_and_todo(store: TicketStore) -> None:
    ticket = store.create(make_input())

    assert ticket.id.startswith("ticket-")
    assert ticket.serial_number == 1
    assert ticket.status is TicketStatus.TODO
    assert ticket.created_at == ticket.updated_at
    assert ticket.is_updated is False
    assert store.current_serial() == 1


def test_many_creates_have_unique_ids_and_increasing_serials(store: TicketStore) -> None:
    created = [store.create(make_input(title=f"Ticket {i}")) for i in range(25)]

    assert len({t.id for t in created}) == 25
    assert [t.serial_number for t in created] == list(range(1, 26))
    # newest first on disk
    assert [t.serial_number for t in store.list_all()] == list(range(25, 0, -1))


def test_colliding_generated_id_is_regenerated(storage: MemoryStorage) -> None:
    ids = iter(["ticket-same", "ticket-same", "ticket-other"])
    store = TicketStore(storage, clock=FakeClock(), id_factory=lambda: next(ids))

    first = store.create(make_input())
    second = store.create(make_input())

    assert first.id == "ticket-same"
    assert second.id == "ticket-other"


def test_serial_is_not_reused_after_delete(store: TicketStore) -> None:
    a = store.create(make_input(title="A"))
    assert a.serial_number == 1
    assert store.delete(a.id, ALICE.id).ok

    b = store.create(make_input(title="B"))
    assert b.serial_number == 2


def test_lost_counter_never_duplicates_a_serial(store: TicketStore, storage: MemoryStorage) -> None:
    store.create(make_input(title="A"))
    store.create(make_input(title="B"))
    storage.delete(store.counter_key)

    c = store.create(make_input(title="C"))
    assert c.serial_number == 3


def test_round_trip_preserves_input_fields(store: TicketStore) -> None:
    ticket_input = make_input(
        description="Users are bounced back to the login page",
        assignee=UserRef(id="u3", name="Carol", image="https://example.test/carol.png"),
        assigned_by=ALICE,
        project=ProjectRef(id="project-web-app-1", name="Web Application"),
        team=TeamRef(id="team-1", name="Frontend"),
        due_date=date(2024, 1, 20),
        tags=["auth", "backend"],
    )
    created = store.create(ticket_input)

    listed = store.list_all()
    assert len(listed) == 1
    stored = listed[0]
    assert stored.model_dump(include=set(TicketInput.model_fields)) == ticket_input.model_dump()
    assert stored.id == created.id
    assert stored.serial_number == created.serial_number
    assert stored.status is TicketStatus.TODO
    assert stored.created_at == created.created_at
    assert stored.updated_at == created.updated_at


def test_update_by_owner_changes_status_and_timestamp(store: TicketStore) -> None:
    ticket = store.create(make_input())

    result = store.update(ticket.id, {"status": "DONE"}, acting_user_id="u1")

    assert result.ok
    assert result.value.status is TicketStatus.DONE
    assert result.value.is_updated is True
    assert result.value.updated_at > ticket.updated_at
    assert store.get(ticket.id).status is TicketStatus.DONE


def test_update_by_other_user_is_rejected_and_leaves_ticket_unchanged(store: TicketStore) -> None:
    ticket = store.create(make_input())
    store.update(ticket.id, {"status": "DONE"}, acting_user_id="u1")
    before = store.get(ticket.id)

    result = store.update(ticket.id, {"status": "TODO"}, acting_user_id="u2")

    assert not result.ok
    assert result.failure is StoreFailure.NOT_OWNER
    assert result.message == NOT_OWNER_MESSAGE
    after = store.get(ticket.id)
    assert after.status is TicketStatus.DONE
    assert after == before


def test_update_without_actor_is_not_owner(store: TicketStore) -> None:
    ticket = store.create(make_input())

    assert store.update(ticket.id, {"title": "x"}, acting_user_id=None).failure is StoreFailure.NOT_OWNER
    assert store.delete(ticket.id, "").failure is StoreFailure.NOT_OWNER


def test_update_unknown_ticket_is_not_found(store: TicketStore) -> None:
    result = store.update("ticket-missing", TicketPatch(status=TicketStatus.DONE), "u1")
    assert result.failure is StoreFailure.NOT_FOUND


def test_update_cannot_change_owner_or_identity(store: TicketStore) -> None:
    ticket = store.create(make_input())

    for payload in ({"createdBy": {"id": "u2", "name": "Bob"}}, {"serialNumber": 99}, {"id": "other"}):
        result = store.update(ticket.id, payload, "u1")
        assert result.failure is StoreFailure.MALFORMED_INPUT

    assert store.get(ticket.id).created_by == ALICE


def test_update_clears_optional_fields_but_keeps_required_ones(store: TicketStore) -> None:
    ticket = store.create(make_input(assignee=BOB, description="details"))

    result = store.update(ticket.id, {"assignee": None, "description": None, "title": None}, "u1")

    assert result.ok
    assert result.value.assignee is None
    assert result.value.description is None
    assert result.value.title == "Fix login bug"


def test_status_transitions_are_unconstrained(store: TicketStore) -> None:
    ticket = store.create(make_input())
    for status in ("DONE", "TODO", "REVIEW", "IN_PROGRESS", "DONE"):
        assert store.update(ticket.id, {"status": status}, "u1").value.status == TicketStatus(status)


def test_delete_removes_exactly_one(store: TicketStore) -> None:
    first = store.create(make_input(title="first"))
    middle = store.create(make_input(title="middle"))
    last = store.create(make_input(title="last"))

    assert store.delete(middle.id, "u1").ok

    remaining = store.list_all()
    assert [t.id for t in remaining] == [last.id, first.id]
    assert remaining == [last, first]

    again = store.delete(middle.id, "u1")
    assert again.failure is StoreFailure.NOT_FOUND


def test_delete_by_other_user_is_rejected(store: TicketStore) -> None:
    ticket = store.create(make_input())

    result = store.delete(ticket.id, BOB.id)

    assert result.failure is StoreFailure.NOT_OWNER
    assert store.get(ticket.id) is not None


def test_ownership_predicate() -> None:
    ticket = Ticket(
        **make_input().model_dump(),
        id="ticket-1",
        serial_number=1,
        created_at="2024-01-15T10:30:00Z",
        updated_at="2024-01-15T10:30:00Z",
    )
    assert can_modify_ticket(ticket, "u1")
    assert not can_modify_ticket(ticket, "u2")
    assert not can_modify_ticket(ticket, None)
    assert not can_modify_ticket(ticket, "")


def _write_duplicated_collection(store: TicketStore, storage: MemoryStorage) -> tuple[str, str]:
    a = store.create(make_input(title="A"))
    b = store.create(make_input(title="B"))
    records = json.loads(storage.get(store.tickets_key))
    shadow = dict(records[1], title="A (stale copy)")
    storage.set(store.tickets_key, json.dumps([records[1], records[0], shadow]))
    return a.id, b.id


def test_list_all_hides_duplicates_without_rewriting(store: TicketStore, storage: MemoryStorage) -> None:
    a_id, b_id = _write_duplicated_collection(store, storage)

    assert [t.id for t in store.list_all()] == [a_id, b_id]
    assert len(json.loads(storage.get(store.tickets_key))) == 3


def test_deduplicate_keeps_first_occurrence_and_is_idempotent(store: TicketStore, storage: MemoryStorage) -> None:
    a_id, b_id = _write_duplicated_collection(store, storage)

    once = store.deduplicate()
    twice = store.deduplicate()

    assert [t.id for t in once] == [a_id, b_id]
    assert once == twice
    assert once[0].title == "A"
    assert len(json.loads(storage.get(store.tickets_key))) == 2


def test_reset_clears_collection_and_counter(store: TicketStore) -> None:
    store.create(make_input())
    store.reset()

    assert store.list_all() == []
    assert store.current_serial() == 0
    assert store.create(make_input()).serial_number == 1


def test_missing_tags_default_to_empty(storage: MemoryStorage) -> None:
    record = {
        "id": "ticket-legacy",
        "serialNumber": 1,
        "title": "Legacy",
        "status": "REVIEW",
        "priority": "LOW",
        "createdBy": {"id": "u1", "name": "Alice"},
        "tags": None,
        "createdAt": "2024-01-15T10:30:00Z",
        "updatedAt": "2024-01-15T10:30:00Z",
        "isUpdated": True,
    }
    storage.set("tickets", json.dumps([record]))
    store = TicketStore(storage)

    [ticket] = store.list_all()
    assert ticket.tags == []
    assert ticket.is_updated is False


def test_is_updated_is_never_persisted(store: TicketStore, storage: MemoryStorage) -> None:
    ticket = store.create(make_input())
    store.update(ticket.id, {"priority": "URGENT"}, "u1")

    [record] = json.loads(storage.get(store.tickets_key))
    assert "isUpdated" not in record
    assert record["priority"] == "URGENT"


def test_corrupt_json_is_storage_unavailable() -> None:
    store = TicketStore(MemoryStorage({"tickets": "{not json"}))

    with pytest.raises(StorageUnavailableError):
        store.list_all()


def test_disabled_storage_is_storage_unavailable(store: TicketStore, storage: MemoryStorage) -> None:
    storage.disabled = True

    with pytest.raises(StorageUnavailableError):
        store.create(make_input())


def test_failed_write_does_not_advance_counter(clock: FakeClock) -> None:
    storage = MemoryStorage(quota_bytes=64)
    store = TicketStore(storage, clock=clock)

    with pytest.raises(StorageUnavailableError) as excinfo:
        store.create(make_input())

    assert excinfo.value.user_message == "Could not save: storage unavailable"
    assert storage.get(store.counter_key) is None
    assert storage.get(store.tickets_key) is None

    storage.quota_bytes = None
    assert store.create(make_input()).serial_number == 1
