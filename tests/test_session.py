from __future__ import annotations

import jwt
import pytest

from bookstore_platform.auth.approval import transition_approval
from bookstore_platform.auth.crud import set_user_active
from bookstore_platform.auth.deps import check_approved_bookseller, check_role, check_seller, verify_session
from bookstore_platform.auth.security import create_access_token
from bookstore_platform.errors import Forbidden, InvalidToken, NotFound, Unauthenticated
from bookstore_platform.models import Principal, Role


SECRET = "test-secret"


def _token(user_id, *, role="user", secret=SECRET):
    return create_access_token(secret=secret, user_id=user_id, username="x", role=role, expires_minutes=5)


def test_missing_token_is_unauthenticated(conn):
    with pytest.raises(Unauthenticated) as ei:
        verify_session(conn, None, secret=SECRET)
    assert ei.value.status_code == 401
    assert ei.value.detail == "missing_token"


def test_garbage_and_foreign_tokens_are_invalid(conn, make_user):
    u, _ = make_user("reader")
    for token in ("garbage", _token(u["id"], secret="other-secret")):
        with pytest.raises(InvalidToken):
            verify_session(conn, token, secret=SECRET)


def test_token_without_numeric_subject_is_invalid(conn):
    token = jwt.encode({"sub": "abc"}, SECRET, algorithm="HS256")
    with pytest.raises(InvalidToken):
        verify_session(conn, token, secret=SECRET)


def test_deleted_user_is_not_found(conn):
    with pytest.raises(NotFound) as ei:
        verify_session(conn, _token(4242), secret=SECRET)
    assert ei.value.detail == "user_not_found"


def test_deactivation_applies_to_existing_tokens(conn, make_user):
    u, _ = make_user("reader")
    token = _token(u["id"])
    assert verify_session(conn, token, secret=SECRET).id == u["id"]
    set_user_active(conn, u["id"], False)
    with pytest.raises(Forbidden) as ei:
        verify_session(conn, token, secret=SECRET)
    assert ei.value.detail == "account_deactivated"


def test_role_comes_from_the_store_not_the_token(conn, make_user):
    u, _ = make_user("reader")
    # Token claims admin, row says user.
    principal = verify_session(conn, _token(u["id"], role="admin"), secret=SECRET)
    assert principal.role is Role.USER
    assert not principal.is_admin

    conn.execute("UPDATE users SET role='admin' WHERE user_id=?", (u["id"],))
    assert verify_session(conn, _token(u["id"], role="user"), secret=SECRET).role is Role.ADMIN


def test_check_role():
    p = Principal(id=1, username="reader", email="r@example.com", role=Role.USER)
    check_role(p, [Role.USER, Role.ADMIN])
    with pytest.raises(Forbidden) as ei:
        check_role(p, [Role.ADMIN])
    assert ei.value.detail == "role_forbidden"
    assert ei.value.extra["userRole"] == "user"


def test_approved_bookseller_gate_follows_live_status(conn, make_user):
    _, admin = make_user("boss", role=Role.ADMIN)
    seller, principal = make_user("acme", role=Role.BOOKSELLER, store_name="Acme Books")

    with pytest.raises(Forbidden) as ei:
        check_approved_bookseller(conn, principal)
    assert ei.value.detail == "store_not_approved"
    assert ei.value.extra["storeStatus"] == "pending"

    transition_approval(conn, admin, seller["id"], "approve")
    check_approved_bookseller(conn, principal)

    transition_approval(conn, admin, seller["id"], "reject")
    with pytest.raises(Forbidden) as ei:
        check_approved_bookseller(conn, principal)
    assert ei.value.extra["storeStatus"] == "rejected"


@pytest.mark.parametrize("role", [Role.USER, Role.ADMIN])
def test_approved_bookseller_gate_rejects_other_roles(conn, make_user, role):
    _, principal = make_user("someone", role=role)
    with pytest.raises(Forbidden) as ei:
        check_approved_bookseller(conn, principal)
    assert ei.value.detail == "bookseller_required"


def test_seller_gate(conn, make_user):
    _, admin = make_user("boss", role=Role.ADMIN)
    _, reader = make_user("reader")
    seller, bookseller = make_user("acme", role=Role.BOOKSELLER, store_name="Acme Books")

    check_seller(conn, admin)
    with pytest.raises(Forbidden) as ei:
        check_seller(conn, reader)
    assert ei.value.detail == "seller_required"
    with pytest.raises(Forbidden) as ei:
        check_seller(conn, bookseller)
    assert ei.value.detail == "store_not_approved"

    transition_approval(conn, admin, seller["id"], "approve")
    check_seller(conn, bookseller)
