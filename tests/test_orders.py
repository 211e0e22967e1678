from __future__ import annotations

import pytest

from bookstore_platform.catalog.books import create_book, delete_book, set_book_status, update_book
from bookstore_platform.catalog.orders import (
    create_order,
    get_order,
    list_my_orders,
    list_orders_by_email,
    recent_orders_for_seller,
    seller_order_stats,
    set_order_status,
)
from bookstore_platform.errors import Forbidden, NotFound, ValidationError
from bookstore_platform.models import Role


BOOK = {
    "title": "Dune",
    "author": "Frank Herbert",
    "description": "Spice.",
    "category": "scifi",
    "coverImage": "dune.png",
    "oldPrice": 30.0,
    "newPrice": 22.5,
    "stock": 4,
}
ADDRESS = {"city": "Austin", "country": "US", "state": "TX", "zipcode": "78701", "planet": "Earth"}


@pytest.fixture
def shop(make_user, conn):
    _, admin = make_user("boss", role=Role.ADMIN)
    _, owner = make_user("acme", role=Role.BOOKSELLER, store_name="Acme Books")
    _, rival = make_user("paper", role=Role.BOOKSELLER, store_name="Paper Trail")
    _, reader = make_user("reader")
    _, other = make_user("other")
    dune = create_book(conn, owner, BOOK)
    emma = create_book(conn, rival, dict(BOOK, title="Emma", newPrice=5.0))
    return {
        "admin": admin,
        "owner": owner,
        "rival": rival,
        "reader": reader,
        "other": other,
        "dune": dune,
        "emma": emma,
    }


def _order(conn, principal, *lines, **kwargs):
    kwargs.setdefault("name", "Reader One")
    kwargs.setdefault("phone", "555-0100")
    kwargs.setdefault("address", ADDRESS)
    items = [{"bookId": book_id, "quantity": qty} for book_id, qty in lines]
    return create_order(conn, principal, items=items, **kwargs)


def test_prices_come_from_the_catalog(conn, shop):
    order = _order(conn, shop["reader"], (shop["dune"]["id"], 2), (shop["emma"]["id"], 1))
    assert order["user"] == shop["reader"].id
    assert order["email"] == "reader@example.com"
    assert order["totalPrice"] == 50.0
    assert order["status"] == "pending"
    assert order["address"] == {"city": "Austin", "country": "US", "state": "TX", "zipcode": "78701"}
    assert [(i["title"], i["quantity"], i["price"]) for i in order["items"]] == [
        ("Dune", 2, 22.5),
        ("Emma", 1, 5.0),
    ]

    # Later price changes do not rewrite history.
    update_book(conn, shop["owner"], shop["dune"]["id"], {"newPrice": 99.0})
    assert get_order(conn, shop["reader"], order["id"])["totalPrice"] == 50.0


@pytest.mark.parametrize(
    "kwargs, lines, detail",
    [
        ({"name": "  "}, [(1, 1)], "order_name_required"),
        ({"phone": ""}, [(1, 1)], "order_phone_required"),
        ({}, [], "order_items_required"),
        ({}, [(1, 0)], "invalid_quantity"),
    ],
)
def test_order_validation(conn, shop, kwargs, lines, detail):
    with pytest.raises(ValidationError) as ei:
        _order(conn, shop["reader"], *lines, **kwargs)
    assert ei.value.detail == detail
    assert list_my_orders(conn, shop["reader"])["total"] == 0


def test_only_active_books_can_be_ordered(conn, shop):
    set_book_status(conn, shop["dune"]["id"], "sold")
    with pytest.raises(ValidationError) as ei:
        _order(conn, shop["reader"], (shop["dune"]["id"], 1))
    assert ei.value.detail == "book_unavailable"
    with pytest.raises(NotFound) as ei:
        _order(conn, shop["reader"], (4242, 1))
    assert ei.value.extra["bookId"] == 4242


def test_orders_are_private_to_their_owner(conn, shop):
    order = _order(conn, shop["reader"], (shop["dune"]["id"], 1))

    with pytest.raises(Forbidden) as ei:
        get_order(conn, shop["other"], order["id"])
    assert ei.value.extra["orderOwner"] is False
    assert ei.value.message == "Not authorized to view this order"
    # Selling a book in the order does not make the seller its owner.
    with pytest.raises(Forbidden):
        get_order(conn, shop["owner"], order["id"])
    assert get_order(conn, shop["admin"], order["id"])["id"] == order["id"]
    with pytest.raises(NotFound):
        get_order(conn, shop["admin"], 4242)

    assert list_orders_by_email(conn, shop["reader"], " Reader@Example.com ")["total"] == 1
    assert list_orders_by_email(conn, shop["admin"], "reader@example.com")["total"] == 1
    with pytest.raises(Forbidden) as ei:
        list_orders_by_email(conn, shop["other"], "reader@example.com")
    assert ei.value.extra["orderOwner"] is False
    assert list_my_orders(conn, shop["other"])["orders"] == []


def test_seller_views_only_their_line_items(conn, shop):
    order = _order(conn, shop["reader"], (shop["dune"]["id"], 2), (shop["emma"]["id"], 3))

    [seen] = recent_orders_for_seller(conn, shop["owner"].id)
    assert seen["id"] == order["id"]
    assert [i["bookId"] for i in seen["items"]] == [shop["dune"]["id"]]
    assert seen["totalPrice"] == 45.0
    assert [i["bookId"] for i in recent_orders_for_seller(conn, shop["rival"].id)[0]["items"]] == [shop["emma"]["id"]]
    assert recent_orders_for_seller(conn, shop["admin"].id) == []


def test_seller_revenue_counts_completed_orders(conn, shop):
    first = _order(conn, shop["reader"], (shop["dune"]["id"], 2))
    _order(conn, shop["other"], (shop["dune"]["id"], 1), (shop["emma"]["id"], 1))
    assert seller_order_stats(conn, shop["owner"].id) == {
        "totalOrders": 2,
        "totalRevenue": 0.0,
        "pendingOrders": 2,
        "recentOrders": 2,
    }

    assert set_order_status(conn, first["id"], "Completed")["status"] == "completed"
    stats = seller_order_stats(conn, shop["owner"].id)
    assert stats["totalRevenue"] == 45.0
    assert stats["pendingOrders"] == 1
    assert seller_order_stats(conn, shop["rival"].id)["totalRevenue"] == 0.0

    with pytest.raises(ValidationError) as ei:
        set_order_status(conn, first["id"], "shipped")
    assert ei.value.detail == "invalid_status"
    with pytest.raises(NotFound):
        set_order_status(conn, 4242, "cancelled")


def test_deleting_a_book_keeps_order_history(conn, shop):
    order = _order(conn, shop["reader"], (shop["dune"]["id"], 1))
    delete_book(conn, shop["owner"], shop["dune"]["id"])

    [item] = get_order(conn, shop["reader"], order["id"])["items"]
    assert item["bookId"] is None
    assert item["title"] == "Dune"
    assert item["sellerId"] == shop["owner"].id
