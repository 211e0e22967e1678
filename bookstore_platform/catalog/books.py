from __future__ import annotations

from typing import Any, Dict, List, Optional

from bookstore_platform.auth.crud import paginate
from bookstore_platform.auth.ownership import check_ownership
from bookstore_platform.db import insert_returning_id
from bookstore_platform.errors import Forbidden, NotFound, ValidationError
from bookstore_platform.models import BookStatus, Principal, Role, enum_text
from bookstore_platform.util.time import days_ago_iso, utcnow_iso


# API field -> column. Anything not listed here cannot be written by clients
# (seller_id and added_by in particular).
_WRITABLE = {
    "title": "title",
    "author": "author",
    "description": "description",
    "category": "category",
    "coverImage": "cover_image",
    "oldPrice": "old_price",
    "newPrice": "new_price",
    "stock": "stock",
    "language": "language",
}
# Catalog placement flags; only admins set these.
_FEATURES = {
    "trending": "trending",
    "recommended": "recommended",
}
_REQUIRED = ("title", "author", "description", "category", "coverImage", "oldPrice", "newPrice")
_BOOL_COLUMNS = ("trending", "recommended")

_SORTABLE = {
    "createdAt": "b.created_at",
    "newPrice": "b.new_price",
    "title": "b.title",
}

_SELECT = """
SELECT b.*, u.username AS seller_username
FROM books b
LEFT JOIN users u ON u.user_id = b.seller_id
"""


def public_book(row: Any) -> Dict[str, Any]:
    d = dict(row)
    return {
        "id": int(d["book_id"]),
        "title": d.get("title"),
        "author": d.get("author"),
        "description": d.get("description"),
        "category": d.get("category"),
        "coverImage": d.get("cover_image"),
        "oldPrice": d.get("old_price"),
        "newPrice": d.get("new_price"),
        "stock": int(d.get("stock") or 0),
        "language": d.get("language"),
        "status": d.get("status"),
        "trending": bool(int(d.get("trending") or 0)),
        "recommended": bool(int(d.get("recommended") or 0)),
        "seller": {"id": int(d["seller_id"]), "username": d.get("seller_username")},
        "addedBy": d.get("added_by"),
        "createdAt": d.get("created_at"),
        "updatedAt": d.get("updated_at"),
    }


def get_book(conn: Any, book_id: int) -> Optional[Any]:
    return conn.execute(f"{_SELECT} WHERE b.book_id=?", (int(book_id),)).fetchone()


def _require_book(conn: Any, book_id: int) -> Any:
    row = get_book(conn, book_id)
    if row is None:
        raise NotFound("book_not_found", "Book not Found!")
    return row


def _columns(fields: Dict[str, Any], *, allow_features: bool = False) -> List[tuple[str, Any]]:
    writable = {**_WRITABLE, **_FEATURES} if allow_features else _WRITABLE
    out: List[tuple[str, Any]] = []
    for key, value in fields.items():
        col = writable.get(key)
        if col is None or value is None:
            continue
        if col in _BOOL_COLUMNS:
            value = 1 if value else 0
        elif col in ("old_price", "new_price"):
            value = float(value)
            if value < 0:
                raise ValidationError("invalid_price", "Price must not be negative")
        elif col == "stock":
            value = int(value)
            if value < 0:
                raise ValidationError("invalid_stock", "Stock must not be negative")
        elif isinstance(value, str):
            value = value.strip()
        out.append((col, value))
    return out


def create_book(conn: Any, principal: Principal, fields: Dict[str, Any]) -> Dict[str, Any]:
    """List a book for sale. The caller becomes its seller.

    Callers must already have passed the seller gate (admin, or approved bookseller).
    """
    if principal.role is Role.ADMIN:
        added_by = "admin"
    elif principal.role is Role.BOOKSELLER:
        added_by = "bookseller"
    elif principal.role is Role.USER:
        raise Forbidden("seller_required", "Access denied. Bookseller or Admin role required")
    else:  # pragma: no cover - Role is closed
        raise Forbidden("role_forbidden")

    missing = [k for k in _REQUIRED if fields.get(k) in (None, "")]
    if missing:
        raise ValidationError("book_fields_missing", "Missing required fields", fields=missing)

    cols = _columns(fields, allow_features=principal.is_admin)
    now = utcnow_iso()
    cols.extend([("seller_id", principal.id), ("added_by", added_by), ("created_at", now), ("updated_at", now)])
    names = ", ".join(c for c, _ in cols)
    marks = ",".join("?" for _ in cols)
    book_id = insert_returning_id(
        conn,
        f"INSERT INTO books ({names}) VALUES ({marks})",
        tuple(v for _, v in cols),
        id_column="book_id",
    )
    return public_book(_require_book(conn, book_id))


def list_books(
    conn: Any,
    *,
    category: str | None = None,
    trending: bool | None = None,
    recommended: bool | None = None,
    min_price: float | None = None,
    max_price: float | None = None,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    """Public catalog listing (active books only)."""
    where = ["b.status=?"]
    params: List[Any] = [BookStatus.ACTIVE.value]
    if category:
        where.append("b.category=?")
        params.append(category)
    if trending is not None:
        where.append("b.trending=?")
        params.append(1 if trending else 0)
    if recommended is not None:
        where.append("b.recommended=?")
        params.append(1 if recommended else 0)
    if min_price is not None:
        where.append("b.new_price>=?")
        params.append(float(min_price))
    if max_price is not None:
        where.append("b.new_price<=?")
        params.append(float(max_price))

    order_col = _SORTABLE.get(sort_by)
    if order_col is None:
        raise ValidationError("invalid_sort_by", "Unsupported sortBy")
    direction = "ASC" if (sort_order or "").lower() == "asc" else "DESC"
    clause = " AND ".join(where)

    total = int(conn.execute(f"SELECT COUNT(*) AS n FROM books b WHERE {clause}", tuple(params)).fetchone()["n"])
    rows = conn.execute(
        f"{_SELECT} WHERE {clause} ORDER BY {order_col} {direction}, b.book_id {direction} LIMIT ? OFFSET ?",
        tuple(params + [limit, (page - 1) * limit]),
    ).fetchall()
    return {"books": [public_book(r) for r in rows], **paginate(total, page, limit)}


def list_books_by_seller(
    conn: Any,
    seller_id: int,
    *,
    status: str | None = BookStatus.ACTIVE.value,
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    """Books of one seller. `status=None` lists every status (seller's own dashboard)."""
    where = ["b.seller_id=?"]
    params: List[Any] = [int(seller_id)]
    if status:
        try:
            st = BookStatus(status)
        except ValueError:
            raise ValidationError("invalid_status", "Status must be active, inactive or sold")
        where.append("b.status=?")
        params.append(st.value)
    clause = " AND ".join(where)

    total = int(conn.execute(f"SELECT COUNT(*) AS n FROM books b WHERE {clause}", tuple(params)).fetchone()["n"])
    rows = conn.execute(
        f"{_SELECT} WHERE {clause} ORDER BY b.created_at DESC, b.book_id DESC LIMIT ? OFFSET ?",
        tuple(params + [limit, (page - 1) * limit]),
    ).fetchall()
    return {"books": [public_book(r) for r in rows], **paginate(total, page, limit)}


def update_book(conn: Any, principal: Principal, book_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
    row = _require_book(conn, book_id)
    check_ownership(principal, row, action="update")

    cols = _columns(changes, allow_features=principal.is_admin)
    if cols:
        cols.append(("updated_at", utcnow_iso()))
        sets = ", ".join(f"{c}=?" for c, _ in cols)
        conn.execute(
            f"UPDATE books SET {sets} WHERE book_id=?",
            tuple([v for _, v in cols] + [int(book_id)]),
        )
    return public_book(_require_book(conn, book_id))


def delete_book(conn: Any, principal: Principal, book_id: int) -> Dict[str, Any]:
    row = _require_book(conn, book_id)
    check_ownership(principal, row, action="delete")
    conn.execute("DELETE FROM favorites WHERE book_id=?", (int(book_id),))
    conn.execute("DELETE FROM books WHERE book_id=?", (int(book_id),))
    return public_book(row)


def set_book_status(conn: Any, book_id: int, status: str) -> Dict[str, Any]:
    """Admin moderation: hide / re-list / mark sold."""
    try:
        st = BookStatus(enum_text(status))
    except ValueError:
        raise ValidationError("invalid_status", "Status must be active, inactive or sold")
    _require_book(conn, book_id)
    conn.execute(
        "UPDATE books SET status=?, updated_at=? WHERE book_id=?",
        (st.value, utcnow_iso(), int(book_id)),
    )
    return public_book(_require_book(conn, book_id))


def set_book_features(
    conn: Any,
    book_id: int,
    *,
    trending: bool | None = None,
    recommended: bool | None = None,
) -> Dict[str, Any]:
    """Admin placement: trending / recommended shelves. Unset flags keep their value."""
    _require_book(conn, book_id)
    cols = _columns({"trending": trending, "recommended": recommended}, allow_features=True)
    if cols:
        cols.append(("updated_at", utcnow_iso()))
        sets = ", ".join(f"{c}=?" for c, _ in cols)
        conn.execute(
            f"UPDATE books SET {sets} WHERE book_id=?",
            tuple([v for _, v in cols] + [int(book_id)]),
        )
    return public_book(_require_book(conn, book_id))


def list_all_books(
    conn: Any,
    *,
    status: str | None = None,
    added_by: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    """Admin view of the catalog, every status included."""
    where: List[str] = []
    params: List[Any] = []
    if status:
        try:
            st = BookStatus(enum_text(status))
        except ValueError:
            raise ValidationError("invalid_status", "Status must be active, inactive or sold")
        where.append("b.status=?")
        params.append(st.value)
    if added_by:
        origin = enum_text(added_by)
        if origin not in ("admin", "bookseller"):
            raise ValidationError("invalid_added_by", "addedBy must be admin or bookseller")
        where.append("b.added_by=?")
        params.append(origin)
    clause = f"WHERE {' AND '.join(where)}" if where else ""

    total = int(conn.execute(f"SELECT COUNT(*) AS n FROM books b {clause}", tuple(params)).fetchone()["n"])
    rows = conn.execute(
        f"{_SELECT} {clause} ORDER BY b.created_at DESC, b.book_id DESC LIMIT ? OFFSET ?",
        tuple(params + [limit, (page - 1) * limit]),
    ).fetchall()
    return {"books": [public_book(r) for r in rows], **paginate(total, page, limit)}


def seller_stats(conn: Any, seller_id: int) -> Dict[str, Any]:
    """Dashboard counters for one seller (plain counts, no aggregation pipeline)."""
    counts = {s.value: 0 for s in BookStatus}
    for r in conn.execute(
        "SELECT status, COUNT(*) AS n FROM books WHERE seller_id=? GROUP BY status",
        (int(seller_id),),
    ).fetchall():
        counts[str(r["status"])] = int(r["n"])

    recent = conn.execute(
        "SELECT COUNT(*) AS n FROM books WHERE seller_id=? AND created_at>=?",
        (int(seller_id), days_ago_iso(30)),
    ).fetchone()["n"]
    favorites = conn.execute(
        """
        SELECT COUNT(*) AS n
        FROM favorites f
        JOIN books b ON b.book_id = f.book_id
        WHERE b.seller_id=?
        """,
        (int(seller_id),),
    ).fetchone()["n"]

    return {
        "totalBooks": sum(counts.values()),
        "activeBooks": counts[BookStatus.ACTIVE.value],
        "inactiveBooks": counts[BookStatus.INACTIVE.value],
        "soldBooks": counts[BookStatus.SOLD.value],
        "recentBooks": int(recent),
        "totalFavorites": int(favorites),
    }
