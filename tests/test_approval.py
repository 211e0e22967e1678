from __future__ import annotations

import pytest

from bookstore_platform.auth.approval import (
    list_booksellers,
    list_pending_booksellers,
    list_status_events,
    next_status,
    notify_decision,
    parse_action,
    transition_approval,
)
from bookstore_platform.auth.crud import authenticate
from bookstore_platform.errors import Forbidden, NotFound, ValidationError
from bookstore_platform.models import ApprovalAction, Role, StoreStatus

from conftest import PASSWORD


@pytest.mark.parametrize("current", [None, *StoreStatus])
def test_next_status_is_total(current):
    assert next_status(current, ApprovalAction.APPROVE) is StoreStatus.APPROVED
    assert next_status(current, ApprovalAction.REJECT) is StoreStatus.REJECTED


def test_parse_action():
    assert parse_action(" Approve ") is ApprovalAction.APPROVE
    for bad in ("maybe", "", None):
        with pytest.raises(ValidationError) as ei:
            parse_action(bad)
        assert ei.value.detail == "invalid_action"


@pytest.fixture
def admin(make_user):
    return make_user("boss", role=Role.ADMIN)[1]


@pytest.fixture
def seller(make_user):
    return make_user("acme", role=Role.BOOKSELLER, store_name="Acme Books")[0]


def test_pending_until_approved(conn, admin, seller):
    assert [u["id"] for u in list_pending_booksellers(conn)] == [seller["id"]]
    with pytest.raises(Forbidden):
        authenticate(conn, "acme@example.com", PASSWORD)

    decision = transition_approval(conn, admin, seller["id"], "approve")
    assert decision.bookseller["id"] == seller["id"]
    assert decision.bookseller["profile"]["storeStatus"] == "approved"
    assert decision.prior is StoreStatus.PENDING
    assert decision.changed
    assert list_pending_booksellers(conn) == []
    assert authenticate(conn, "acme@example.com", PASSWORD)["user_id"] == seller["id"]


def test_transitions_are_idempotent_and_reversible(conn, admin, seller):
    first = transition_approval(conn, admin, seller["id"], "approve")
    second = transition_approval(conn, admin, seller["id"], "approve")
    assert first.bookseller["profile"] == second.bookseller["profile"]
    assert not second.changed

    assert transition_approval(conn, admin, seller["id"], "reject").bookseller["profile"]["storeStatus"] == "rejected"
    assert transition_approval(conn, admin, seller["id"], ApprovalAction.APPROVE).new is StoreStatus.APPROVED


def test_every_decision_is_recorded(conn, admin, seller):
    for action in ("approve", "approve", "reject"):
        transition_approval(conn, admin, seller["id"], action)
    events = list_status_events(conn, seller["id"])
    assert [(e["priorStatus"], e["newStatus"]) for e in events] == [
        ("pending", "approved"),
        ("approved", "approved"),
        ("approved", "rejected"),
    ]
    assert {e["actorUsername"] for e in events} == {"boss"}


def test_only_admins_decide(conn, make_user, seller):
    _, reader = make_user("reader")
    with pytest.raises(Forbidden) as ei:
        transition_approval(conn, reader, seller["id"], "approve")
    assert ei.value.detail == "admin_required"
    assert list_status_events(conn, seller["id"]) == []


def test_target_must_be_a_bookseller(conn, make_user, admin):
    reader, _ = make_user("reader")
    with pytest.raises(NotFound) as ei:
        transition_approval(conn, admin, reader["id"], "approve")
    assert ei.value.detail == "bookseller_not_found"
    with pytest.raises(NotFound):
        transition_approval(conn, admin, 9999, "approve")
    # Plain users never acquire a store status.
    assert authenticate(conn, "reader@example.com", PASSWORD)["store_status"] is None


def test_invalid_action_leaves_status_alone(conn, admin, seller):
    with pytest.raises(ValidationError):
        transition_approval(conn, admin, seller["id"], "promote")
    assert list_pending_booksellers(conn)[0]["id"] == seller["id"]


def test_list_booksellers_stats(conn, make_user, admin, seller):
    other, _ = make_user("paper", role=Role.BOOKSELLER, store_name="Paper Trail")
    transition_approval(conn, admin, other["id"], "reject")

    data = list_booksellers(conn)
    assert data["stats"] == {"total": 2, "pending": 1, "approved": 0, "rejected": 1}
    assert [b["username"] for b in list_booksellers(conn, status="rejected")["booksellers"]] == ["paper"]
    assert list_booksellers(conn, search="acme")["pagination"]["total"] == 1
    with pytest.raises(ValidationError):
        list_booksellers(conn, status="banned")


def test_decision_mail_only_when_status_changes(conn, cfg, admin, seller, monkeypatch):
    sent = []
    monkeypatch.setattr(
        "bookstore_platform.auth.approval.send_mail_async",
        lambda cfg, *, to, subject, html: sent.append((to, subject)),
    )
    first = transition_approval(conn, admin, seller["id"], "approve")
    second = transition_approval(conn, admin, seller["id"], "approve")
    # The transition itself never mails; the caller does once it has committed.
    assert sent == []

    notify_decision(cfg, first)
    assert notify_decision(cfg, second) is None
    assert sent == [("acme@example.com", "Your bookstore has been approved")]
