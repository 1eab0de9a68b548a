"""Ticket and event repository behavior, including compare-and-swap saves."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from ticketforge.domain.events import EventType
from ticketforge.domain.lifecycle import TicketStatus
from ticketforge.domain.ports import TicketRepository
from ticketforge.domain.ticket import Ticket
from ticketforge.observability.events import build_event
from ticketforge.persistence.repositories import (
    StaleTicketError,
    TicketEventRepo,
    TicketNotFoundError,
    TicketRepo,
)
from ticketforge.persistence.state_db import StateDB

from .. import (
    REPOSITORY,
    WORKSPACE,
    at,
    external_issue,
    make_draft,
    make_generating,
    make_ready,
    ticket_id,
)

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture()
def db(tmp_path: Path) -> StateDB:
    return StateDB(tmp_path / "state" / "ticketforge.sqlite3")


@pytest.fixture()
def repo(db: StateDB) -> TicketRepo:
    return TicketRepo(db)


def test_repo_satisfies_port(repo: TicketRepo) -> None:
    assert isinstance(repo, TicketRepository)


def test_save_inserts_then_updates_and_bumps_revision(repo: TicketRepo) -> None:
    ticket = make_draft()

    repo.save(ticket)
    assert ticket.revision == 1

    ticket.start_generating("wf-1", now=at(10))
    repo.save(ticket)
    assert ticket.revision == 2

    loaded = repo.get(ticket.id, WORKSPACE)
    assert loaded.revision == 2
    assert loaded.status is TicketStatus.GENERATING
    assert loaded.locked_by == "wf-1"
    assert loaded.to_dict() == ticket.to_dict()


def test_second_writer_loses_the_race(repo: TicketRepo) -> None:
    repo.save(make_draft())
    first = repo.get(ticket_id(1), WORKSPACE)
    second = repo.get(ticket_id(1), WORKSPACE)

    first.start_generating("wf-1", now=at(10))
    second.start_generating("wf-2", now=at(11))
    repo.save(first)

    with pytest.raises(StaleTicketError) as exc_info:
        repo.save(second)

    assert exc_info.value.expected_revision == 1
    stored = repo.get(ticket_id(1), WORKSPACE)
    assert stored.locked_by == "wf-1"
    assert stored.revision == 2


def test_duplicate_insert_is_stale(repo: TicketRepo) -> None:
    repo.save(make_draft())

    with pytest.raises(StaleTicketError, match="modified concurrently"):
        repo.save(make_draft())


def test_update_is_scoped_to_workspace(repo: TicketRepo) -> None:
    ticket = make_draft()
    repo.save(ticket)
    foreign = make_draft(workspace_id="ws-2")
    foreign.record_revision(1)

    with pytest.raises(StaleTicketError):
        repo.save(foreign)


def test_get_outside_workspace_raises_not_found(repo: TicketRepo) -> None:
    repo.save(make_draft())

    with pytest.raises(TicketNotFoundError, match="in workspace ws-2") as exc_info:
        repo.get(ticket_id(1), "ws-2")

    assert isinstance(exc_info.value, LookupError)
    assert repo.find_by_id(ticket_id(1)) is not None
    assert repo.find_by_id(ticket_id(2)) is None


def test_caller_chosen_ids_round_trip(repo: TicketRepo) -> None:
    ticket = Ticket.create_draft(WORKSPACE, "Add payment integration", ticket_id="t-1", now=at(0))
    repo.save(ticket)

    found = repo.find_by_id("t-1")
    assert found is not None
    assert found.to_dict() == ticket.to_dict()
    assert repo.get("t-1", WORKSPACE).revision == 1

    repo.delete("t-1", WORKSPACE)
    assert repo.find_by_id("t-1") is None


def test_unknown_ids_are_absent_not_invalid(repo: TicketRepo) -> None:
    assert repo.find_by_id("missing") is None
    with pytest.raises(TicketNotFoundError, match="ticket not found: missing"):
        repo.get("missing", WORKSPACE)
    repo.delete("missing", WORKSPACE)
    assert TicketEventRepo(repo.db).list_for_ticket("missing") == []


def test_find_open_filters_status_repository_and_workspace(repo: TicketRepo) -> None:
    ready = make_ready(1)
    draft = make_draft(2)
    other_repo = make_ready(3, repository="acme/ledger")
    other_workspace = make_ready(4, workspace_id="ws-2")
    created = make_ready(5)
    created.export(external_issue(), now=at(20))
    for ticket in (created, other_workspace, other_repo, draft, ready):
        repo.save(ticket)

    found = repo.find_open_by_workspace_and_repository(WORKSPACE, REPOSITORY)

    assert [ticket.id for ticket in found] == [ready.id, created.id]
    assert all(ticket.revision == 1 for ticket in found)


def test_list_orders_by_updated_desc_and_filters_status(repo: TicketRepo) -> None:
    for seed in (1, 2, 3):
        repo.save(make_draft(seed))
    repo.save(make_generating(4))

    listed = repo.list(WORKSPACE)
    assert [ticket.id for ticket in listed] == [ticket_id(seed) for seed in (4, 3, 2, 1)]

    drafts = repo.list(WORKSPACE, status="draft", limit=2)
    assert [ticket.id for ticket in drafts] == [ticket_id(3), ticket_id(2)]

    with pytest.raises(ValueError, match="limit"):
        repo.list(WORKSPACE, limit=0)


def test_delete_removes_only_matching_workspace(repo: TicketRepo) -> None:
    repo.save(make_draft())

    repo.delete(ticket_id(1), "ws-2")
    assert repo.find_by_id(ticket_id(1)) is not None

    repo.delete(ticket_id(1), WORKSPACE)
    assert repo.find_by_id(ticket_id(1)) is None


def test_event_repo_appends_and_lists_newest_first(db: StateDB) -> None:
    events = TicketEventRepo(db)
    tid = ticket_id(1)
    first = build_event(
        EventType.TICKET_LOCK_FORCED,
        {"ticket_id": tid, "previous_holder": "wf-1"},
        correlation_id="corr-1",
        timestamp=at(10),
    )
    second = build_event(
        EventType.TICKET_DRIFTED, {"ticket_id": tid, "reason": "changed"}, timestamp=at(20)
    )
    unrelated = build_event(EventType.DRIFT_SCAN_COMPLETED, {"checked": 3}, timestamp=at(30))

    for event in (first, second, unrelated):
        events(event)

    assert [event.event_id for event in events.list_for_ticket(tid)] == [
        second.event_id,
        first.event_id,
    ]
    assert events.get(first.event_id) == first
    assert [event.event_id for event in events.list(event_type="DriftScanCompleted")] == [
        unrelated.event_id
    ]
    assert len(events.list(limit=2)) == 2
