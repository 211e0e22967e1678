"""Database schema for the Bookstore Marketplace.

Development runs on SQLite; production on Postgres.

We intentionally keep timestamps as ISO-8601 TEXT (UTC, with 'Z') for portability and to
avoid timezone surprises across engines. ISO strings sort lexicographically in time order.

Bookseller store fields that we filter or enforce uniqueness on (store_name, store_status)
are real columns; the rest of the profile is a JSON document in profile_json.

NOTE: The Postgres schema is generated from the SQLite schema with a small set of
transformations (types + autoincrement).
"""

from __future__ import annotations

import re


SCHEMA_SQLITE = r"""
PRAGMA foreign_keys = ON;

-- Users / Auth
-- Passwords are stored as hashes only. Sessions are stateless JWTs.
CREATE TABLE IF NOT EXISTS users (
    user_id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('user','bookseller','admin')),
    is_active INTEGER NOT NULL DEFAULT 1,

    -- Bookseller store (NULL for other roles)
    store_name TEXT,
    store_status TEXT CHECK (store_status IS NULL OR store_status IN ('pending','approved','rejected')),

    profile_json TEXT NOT NULL DEFAULT '{}',
    preferences_json TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_login_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_users_role_active ON users (role, is_active);
CREATE INDEX IF NOT EXISTS idx_users_role_store_status ON users (role, store_status);
CREATE UNIQUE INDEX IF NOT EXISTS uq_users_bookseller_store_name ON users (store_name) WHERE role = 'bookseller';

-- Store approval audit trail (one row per admin decision)
CREATE TABLE IF NOT EXISTS store_status_events (
    event_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    actor_id INTEGER NOT NULL,
    action TEXT NOT NULL CHECK (action IN ('approve','reject')),
    prior_status TEXT,
    new_status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id),
    FOREIGN KEY (actor_id) REFERENCES users(user_id)
);
CREATE INDEX IF NOT EXISTS idx_store_status_events_user ON store_status_events (user_id, created_at);

-- Catalog
CREATE TABLE IF NOT EXISTS books (
    book_id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    author TEXT NOT NULL,
    description TEXT NOT NULL,
    category TEXT NOT NULL,
    cover_image TEXT NOT NULL,
    old_price REAL NOT NULL,
    new_price REAL NOT NULL,
    stock INTEGER NOT NULL DEFAULT 0,
    language TEXT NOT NULL DEFAULT 'English',
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active','inactive','sold')),
    trending INTEGER NOT NULL DEFAULT 0,
    recommended INTEGER NOT NULL DEFAULT 0,
    seller_id INTEGER NOT NULL,
    added_by TEXT NOT NULL DEFAULT 'bookseller' CHECK (added_by IN ('admin','bookseller')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (seller_id) REFERENCES users(user_id)
);
CREATE INDEX IF NOT EXISTS idx_books_seller_status ON books (seller_id, status);
CREATE INDEX IF NOT EXISTS idx_books_category ON books (category, trending);

-- Favorites (join entity; duplicates rejected by the store)
CREATE TABLE IF NOT EXISTS favorites (
    favorite_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    book_id INTEGER NOT NULL,
    added_at TEXT NOT NULL,
    UNIQUE (user_id, book_id),
    FOREIGN KEY (user_id) REFERENCES users(user_id),
    FOREIGN KEY (book_id) REFERENCES books(book_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_favorites_book ON favorites (book_id);

-- Orders
-- Line items snapshot title, price and seller so history survives book edits and deletes.
CREATE TABLE IF NOT EXISTS orders (
    order_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    phone TEXT NOT NULL,
    address_json TEXT NOT NULL DEFAULT '{}',
    total_price REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','completed','cancelled')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id)
);
CREATE INDEX IF NOT EXISTS idx_orders_user ON orders (user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_orders_email ON orders (email, created_at);

CREATE TABLE IF NOT EXISTS order_items (
    item_id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id INTEGER NOT NULL,
    book_id INTEGER,
    seller_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    quantity INTEGER NOT NULL CHECK (quantity > 0),
    price REAL NOT NULL,
    FOREIGN KEY (order_id) REFERENCES orders(order_id) ON DELETE CASCADE,
    FOREIGN KEY (book_id) REFERENCES books(book_id) ON DELETE SET NULL,
    FOREIGN KEY (seller_id) REFERENCES users(user_id)
);
CREATE INDEX IF NOT EXISTS idx_order_items_seller ON order_items (seller_id, order_id);
CREATE INDEX IF NOT EXISTS idx_order_items_order ON order_items (order_id);
"""


def _sqlite_to_postgres(ddl: str) -> str:
    # Remove SQLite pragmas
    lines: list[str] = []
    for line in ddl.splitlines():
        if line.strip().upper().startswith("PRAGMA "):
            continue
        lines.append(line)
    out = "\n".join(lines)

    # Types
    out = re.sub(r"\bREAL\b", "DOUBLE PRECISION", out)

    # AUTOINCREMENT primary keys
    out = re.sub(
        r"INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT",
        "BIGSERIAL PRIMARY KEY",
        out,
        flags=re.IGNORECASE,
    )
    out = re.sub(r"\bAUTOINCREMENT\b", "", out, flags=re.IGNORECASE)

    # Drop SQL comments so the naive ';' split in db._exec_schema stays safe.
    out = "\n".join(line for line in out.splitlines() if not line.strip().startswith("--"))

    return out


SCHEMA_POSTGRES = _sqlite_to_postgres(SCHEMA_SQLITE)


def get_schema_sql(dialect: str) -> str:
    d = (dialect or "").lower()
    if d.startswith("post"):
        return SCHEMA_POSTGRES
    return SCHEMA_SQLITE
