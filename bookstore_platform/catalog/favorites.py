"""Favorites: a unique (user, book) join.

Every function is scoped to the calling principal; nobody can read or change
someone else's favorites.
"""

from __future__ import annotations

from typing import Any, Dict

from bookstore_platform.auth.crud import paginate
from bookstore_platform.db import insert_returning_id, is_unique_violation
from bookstore_platform.errors import DuplicateFavorite, NotFound
from bookstore_platform.models import Principal
from bookstore_platform.util.time import utcnow_iso

from .books import get_book, public_book


def add_favorite(conn: Any, principal: Principal, book_id: int) -> Dict[str, Any]:
    book = get_book(conn, book_id)
    if book is None:
        raise NotFound("book_not_found", "Book not found")

    existing = conn.execute(
        "SELECT 1 FROM favorites WHERE user_id=? AND book_id=?",
        (principal.id, int(book_id)),
    ).fetchone()
    if existing is not None:
        raise DuplicateFavorite("favorite_exists", "Book already in favorites")

    now = utcnow_iso()
    try:
        favorite_id = insert_returning_id(
            conn,
            "INSERT INTO favorites (user_id, book_id, added_at) VALUES (?,?,?)",
            (principal.id, int(book_id), now),
            id_column="favorite_id",
        )
    except Exception as exc:
        # Concurrent add of the same pair: the UNIQUE constraint decides.
        if is_unique_violation(exc):
            raise DuplicateFavorite("favorite_exists", "Book already in favorites")
        raise

    return {"id": favorite_id, "user": principal.id, "book": public_book(book), "addedAt": now}


def remove_favorite(conn: Any, principal: Principal, book_id: int) -> None:
    cur = conn.execute(
        "DELETE FROM favorites WHERE user_id=? AND book_id=?",
        (principal.id, int(book_id)),
    )
    if cur.rowcount == 0:
        raise NotFound("favorite_not_found", "Favorite not found")


def is_favorited(conn: Any, principal: Principal, book_id: int) -> bool:
    row = conn.execute(
        "SELECT 1 FROM favorites WHERE user_id=? AND book_id=?",
        (principal.id, int(book_id)),
    ).fetchone()
    return row is not None


def favorite_count(conn: Any, book_id: int) -> int:
    row = conn.execute("SELECT COUNT(*) AS n FROM favorites WHERE book_id=?", (int(book_id),)).fetchone()
    return int(row["n"])


def list_favorites(conn: Any, principal: Principal, *, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    total = int(
        conn.execute("SELECT COUNT(*) AS n FROM favorites WHERE user_id=?", (principal.id,)).fetchone()["n"]
    )
    rows = conn.execute(
        """
        SELECT f.favorite_id, f.added_at, b.*, u.username AS seller_username
        FROM favorites f
        JOIN books b ON b.book_id = f.book_id
        LEFT JOIN users u ON u.user_id = b.seller_id
        WHERE f.user_id=?
        ORDER BY f.added_at DESC, f.favorite_id DESC
        LIMIT ? OFFSET ?
        """,
        (principal.id, limit, (page - 1) * limit),
    ).fetchall()
    favorites = []
    for r in rows:
        favorites.append(
            {
                "id": int(r["favorite_id"]),
                "book": public_book(r),
                "addedAt": r["added_at"],
            }
        )
    return {"favorites": favorites, **paginate(total, page, limit)}
