"""Orders: a customer's purchase of one or more catalog books.

An order belongs to the user who placed it. Prices come from the catalog at
checkout, never from the client. Booksellers only ever see the line items of
their own books.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List

from bookstore_platform.auth.crud import normalize_email, paginate
from bookstore_platform.auth.ownership import check_ownership
from bookstore_platform.db import insert_returning_id
from bookstore_platform.errors import Forbidden, NotFound, ValidationError
from bookstore_platform.models import BookStatus, OrderStatus, Principal, enum_text
from bookstore_platform.util.time import days_ago_iso, utcnow_iso

from .books import get_book


_ADDRESS_FIELDS = ("city", "country", "state", "zipcode")


def _loads(raw: Any) -> Dict[str, Any]:
    try:
        v = json.loads(raw or "{}")
    except (TypeError, ValueError):
        return {}
    return v if isinstance(v, dict) else {}


def _item(row: Any) -> Dict[str, Any]:
    return {
        "bookId": int(row["book_id"]) if row["book_id"] is not None else None,
        "sellerId": int(row["seller_id"]),
        "title": row["title"],
        "quantity": int(row["quantity"]),
        "price": float(row["price"]),
    }


def public_order(row: Any, items: Iterable[Any]) -> Dict[str, Any]:
    d = dict(row)
    return {
        "id": int(d["order_id"]),
        "user": int(d["user_id"]),
        "name": d.get("name"),
        "email": d.get("email"),
        "phone": d.get("phone"),
        "address": _loads(d.get("address_json")),
        "items": [_item(i) for i in items],
        "totalPrice": float(d.get("total_price") or 0),
        "status": d.get("status"),
        "createdAt": d.get("created_at"),
        "updatedAt": d.get("updated_at"),
    }


def _items_of(conn: Any, order_id: int, *, seller_id: int | None = None) -> List[Any]:
    sql = "SELECT * FROM order_items WHERE order_id=?"
    params: List[Any] = [int(order_id)]
    if seller_id is not None:
        sql += " AND seller_id=?"
        params.append(int(seller_id))
    return conn.execute(sql + " ORDER BY item_id ASC", tuple(params)).fetchall()


def create_order(
    conn: Any,
    principal: Principal,
    *,
    name: str,
    phone: str,
    address: Dict[str, Any] | None,
    items: List[Dict[str, Any]],
) -> Dict[str, Any]:
    """Place an order for the caller. The order email is the caller's account email."""
    name = (name or "").strip()
    phone = (phone or "").strip()
    if not name:
        raise ValidationError("order_name_required", "Name is required")
    if not phone:
        raise ValidationError("order_phone_required", "Phone is required")
    if not items:
        raise ValidationError("order_items_required", "An order needs at least one book")
    if not principal.email:
        raise ValidationError("email_blank", "Your account has no email address")

    lines: List[tuple] = []
    total = 0.0
    for it in items:
        book_id = int(it.get("bookId") or 0)
        quantity = int(it.get("quantity") or 1)
        if quantity < 1:
            raise ValidationError("invalid_quantity", "Quantity must be at least 1")
        book = get_book(conn, book_id)
        if book is None:
            raise NotFound("book_not_found", "Book not found", bookId=book_id)
        if book["status"] != BookStatus.ACTIVE.value:
            raise ValidationError("book_unavailable", "Book is not available for sale", bookId=book_id)
        price = float(book["new_price"])
        total += price * quantity
        lines.append((book_id, int(book["seller_id"]), str(book["title"]), quantity, price))

    clean_address = {k: str(v).strip() for k, v in (address or {}).items() if k in _ADDRESS_FIELDS and v}
    now = utcnow_iso()
    order_id = insert_returning_id(
        conn,
        """
        INSERT INTO orders (user_id, name, email, phone, address_json, total_price, status, created_at, updated_at)
        VALUES (?,?,?,?,?,?,?,?,?)
        """,
        (
            principal.id,
            name,
            normalize_email(principal.email),
            phone,
            json.dumps(clean_address, ensure_ascii=False),
            round(total, 2),
            OrderStatus.PENDING.value,
            now,
            now,
        ),
        id_column="order_id",
    )
    for book_id, seller_id, title, quantity, price in lines:
        insert_returning_id(
            conn,
            """
            INSERT INTO order_items (order_id, book_id, seller_id, title, quantity, price)
            VALUES (?,?,?,?,?,?)
            """,
            (order_id, book_id, seller_id, title, quantity, price),
            id_column="item_id",
        )
    return get_order(conn, principal, order_id)


def _require_order(conn: Any, order_id: int) -> Any:
    row = conn.execute("SELECT * FROM orders WHERE order_id=?", (int(order_id),)).fetchone()
    if row is None:
        raise NotFound("order_not_found", "Order not found")
    return row


def get_order(conn: Any, principal: Principal, order_id: int) -> Dict[str, Any]:
    row = _require_order(conn, order_id)
    check_ownership(principal, row, owner_field="user_id", action="view", noun="order")
    return public_order(row, _items_of(conn, order_id))


def _list(conn: Any, where: str, params: List[Any], *, page: int, limit: int) -> Dict[str, Any]:
    total = int(conn.execute(f"SELECT COUNT(*) AS n FROM orders WHERE {where}", tuple(params)).fetchone()["n"])
    rows = conn.execute(
        f"SELECT * FROM orders WHERE {where} ORDER BY created_at DESC, order_id DESC LIMIT ? OFFSET ?",
        tuple(params + [limit, (page - 1) * limit]),
    ).fetchall()
    orders = [public_order(r, _items_of(conn, int(r["order_id"]))) for r in rows]
    return {"orders": orders, **paginate(total, page, limit)}


def list_my_orders(conn: Any, principal: Principal, *, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    return _list(conn, "user_id=?", [principal.id], page=page, limit=limit)


def list_orders_by_email(
    conn: Any,
    principal: Principal,
    email: str,
    *,
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    """Orders placed under an email address. Callers may only look up their own, admins any."""
    e = normalize_email(email)
    if not principal.is_admin and e != normalize_email(principal.email or ""):
        raise Forbidden(
            "not_owner",
            "Not authorized to view these orders",
            userRole=principal.role.value,
            orderOwner=False,
        )
    return _list(conn, "email=?", [e], page=page, limit=limit)


def set_order_status(conn: Any, order_id: int, status: str) -> Dict[str, Any]:
    """Admin fulfilment: pending -> completed | cancelled (and back)."""
    try:
        st = OrderStatus(enum_text(status))
    except ValueError:
        raise ValidationError("invalid_status", "Status must be pending, completed or cancelled")
    _require_order(conn, order_id)
    conn.execute(
        "UPDATE orders SET status=?, updated_at=? WHERE order_id=?",
        (st.value, utcnow_iso(), int(order_id)),
    )
    row = _require_order(conn, order_id)
    return public_order(row, _items_of(conn, order_id))


def recent_orders_for_seller(conn: Any, seller_id: int, *, limit: int = 10) -> List[Dict[str, Any]]:
    """Latest orders that contain the seller's books, trimmed to the seller's own line items."""
    rows = conn.execute(
        """
        SELECT o.*
        FROM orders o
        WHERE o.order_id IN (SELECT order_id FROM order_items WHERE seller_id=?)
        ORDER BY o.created_at DESC, o.order_id DESC
        LIMIT ?
        """,
        (int(seller_id), int(limit)),
    ).fetchall()
    out = []
    for r in rows:
        order = public_order(r, _items_of(conn, int(r["order_id"]), seller_id=seller_id))
        # The seller sees their share, not the customer's whole basket.
        order["totalPrice"] = round(sum(i["price"] * i["quantity"] for i in order["items"]), 2)
        out.append(order)
    return out


def seller_order_stats(conn: Any, seller_id: int) -> Dict[str, Any]:
    def _count(extra: str = "", params: tuple = ()) -> int:
        row = conn.execute(
            f"""
            SELECT COUNT(DISTINCT o.order_id) AS n
            FROM orders o
            JOIN order_items i ON i.order_id = o.order_id
            WHERE i.seller_id=? {extra}
            """,
            (int(seller_id),) + params,
        ).fetchone()
        return int(row["n"])

    revenue = conn.execute(
        """
        SELECT COALESCE(SUM(i.quantity * i.price), 0) AS total
        FROM order_items i
        JOIN orders o ON o.order_id = i.order_id
        WHERE i.seller_id=? AND o.status=?
        """,
        (int(seller_id), OrderStatus.COMPLETED.value),
    ).fetchone()["total"]

    return {
        "totalOrders": _count(),
        "totalRevenue": round(float(revenue or 0), 2),
        "pendingOrders": _count("AND o.status=?", (OrderStatus.PENDING.value,)),
        "recentOrders": _count("AND o.created_at>=?", (days_ago_iso(30),)),
    }
