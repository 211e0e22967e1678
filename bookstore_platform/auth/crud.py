from __future__ import annotations

import json
import math
import re
from typing import Any, Dict, List, Optional

from bookstore_platform.config import Config
from bookstore_platform.db import connect, insert_returning_id, is_unique_violation, unique_violation_target
from bookstore_platform.errors import Forbidden, NotFound, Unauthenticated, ValidationError
from bookstore_platform.models import SELF_REGISTER_ROLES, Role, StoreStatus, parse_role
from bookstore_platform.util.time import utcnow_iso

from .security import hash_password, verify_password


_USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]+$")

# Free-form profile fields kept in profile_json, with max lengths where they have one.
_PROFILE_FIELDS: Dict[str, Optional[int]] = {
    "fullName": 100,
    "phone": None,
    "address": None,
    "bio": 500,
    "avatar": None,
    "storeDescription": 1000,
    "businessLicense": None,
    "taxId": None,
    "storeContact": None,
    "storeAddress": None,
}

_DEFAULT_PREFERENCES = {"newsletter": True, "notifications": True}


def normalize_username(username: str) -> str:
    return (username or "").strip().lower()


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _loads(raw: Any) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        v = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return v if isinstance(v, dict) else {}


def public_user(row: Any | Dict[str, Any]) -> Dict[str, Any]:
    """API shape of a user row. Never includes the password hash."""
    d = dict(row)
    profile = _loads(d.get("profile_json"))
    if d.get("role") == Role.BOOKSELLER.value:
        profile["storeName"] = d.get("store_name")
        profile["storeStatus"] = d.get("store_status")
    preferences = dict(_DEFAULT_PREFERENCES)
    preferences.update(_loads(d.get("preferences_json")))
    return {
        "id": int(d["user_id"]),
        "username": d.get("username"),
        "email": d.get("email"),
        "role": d.get("role"),
        "isActive": bool(int(d.get("is_active") or 0)),
        "profile": profile,
        "preferences": preferences,
        "lastLogin": d.get("last_login_at"),
        "createdAt": d.get("created_at"),
        "updatedAt": d.get("updated_at"),
    }


def get_user_by_id(conn: Any, user_id: int) -> Optional[Any]:
    return conn.execute(
        "SELECT * FROM users WHERE user_id=?",
        (int(user_id),),
    ).fetchone()


def get_user_by_email(conn: Any, email: str) -> Optional[Any]:
    e = normalize_email(email)
    if not e:
        return None
    return conn.execute("SELECT * FROM users WHERE email=?", (e,)).fetchone()


def get_user_by_username(conn: Any, username: str) -> Optional[Any]:
    u = normalize_username(username)
    if not u:
        return None
    return conn.execute("SELECT * FROM users WHERE username=?", (u,)).fetchone()


def store_name_taken(conn: Any, store_name: str, *, exclude_user_id: int | None = None) -> bool:
    sql = "SELECT 1 FROM users WHERE role='bookseller' AND store_name=?"
    params: List[Any] = [store_name]
    if exclude_user_id is not None:
        sql += " AND user_id<>?"
        params.append(int(exclude_user_id))
    return conn.execute(sql, tuple(params)).fetchone() is not None


# -----------------------------
# Validation
# -----------------------------


def validate_username(username: str) -> str:
    u = normalize_username(username)
    if len(u) < 3 or len(u) > 30:
        raise ValidationError("username_length", "Username must be between 3 and 30 characters")
    if not _USERNAME_RE.match(u):
        raise ValidationError(
            "username_charset",
            "Username can only contain letters, numbers, and underscores",
        )
    return u


def validate_password(password: str) -> str:
    p = password or ""
    if len(p) < 6:
        raise ValidationError("password_too_short", "Password must be at least 6 characters long")
    if not (re.search(r"[a-z]", p) and re.search(r"[A-Z]", p) and re.search(r"\d", p)):
        raise ValidationError(
            "password_too_weak",
            "Password must contain at least one lowercase letter, one uppercase letter, and one number",
        )
    return p


def _clean_profile(profile: Dict[str, Any] | None) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in (profile or {}).items():
        if key not in _PROFILE_FIELDS or value is None:
            continue
        max_len = _PROFILE_FIELDS[key]
        if isinstance(value, str):
            value = value.strip()
            if max_len is not None and len(value) > max_len:
                raise ValidationError(
                    f"{key}_too_long",
                    f"{key} must be less than {max_len} characters",
                )
        out[key] = value
    return out


def unique_violation_error(exc: BaseException) -> ValidationError:
    """Map a users-table unique violation to the same error the pre-checks raise."""
    target = unique_violation_target(exc)
    if "store_name" in target:
        return ValidationError("store_name_taken", "Store name is already taken")
    if "email" in target:
        return ValidationError("email_exists", "User with this email already exists!")
    if "username" in target:
        return ValidationError("username_exists", "User with this username already exists!")
    return ValidationError("user_exists", "User with this username, email or store name already exists!")


# -----------------------------
# Create
# -----------------------------


def create_user(
    conn: Any,
    *,
    username: str,
    email: str,
    password: str,
    role: Role | str = Role.USER,
    profile: Dict[str, Any] | None = None,
    is_active: bool = True,
) -> Dict[str, Any]:
    """Insert a user after uniqueness checks.

    Booksellers need a store name that no other bookseller uses; they always start
    in the `pending` store status. No password policy here (see register_user).
    """
    u = normalize_username(username)
    e = normalize_email(email)
    if not u:
        raise ValidationError("username_blank", "Username is required")
    if not e:
        raise ValidationError("email_blank", "Email is required")
    try:
        r = parse_role(role)
    except ValueError:
        raise ValidationError("invalid_role", "Role must be one of user, bookseller, admin")

    existing = conn.execute(
        "SELECT email, username FROM users WHERE email=? OR username=?",
        (e, u),
    ).fetchone()
    if existing is not None:
        field = "email" if existing["email"] == e else "username"
        raise ValidationError(f"{field}_exists", f"User with this {field} already exists!")

    raw_profile = dict(profile or {})
    store_name: str | None = None
    store_status: str | None = None
    if r is Role.BOOKSELLER:
        store_name = str(raw_profile.get("storeName") or "").strip()
        if not store_name:
            raise ValidationError("store_name_required", "Store name is required for booksellers")
        if store_name_taken(conn, store_name):
            raise ValidationError("store_name_taken", "Store name is already taken")
        store_status = StoreStatus.PENDING.value

    clean = _clean_profile(raw_profile)
    if r is Role.BOOKSELLER:
        clean.setdefault("storeContact", {})

    now = utcnow_iso()
    try:
        user_id = insert_returning_id(
            conn,
            """
            INSERT INTO users (
                username, email, password_hash, role, is_active,
                store_name, store_status, profile_json, preferences_json,
                created_at, updated_at
            )
            VALUES (?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                u,
                e,
                hash_password(password),
                r.value,
                1 if is_active else 0,
                store_name,
                store_status,
                json.dumps(clean, ensure_ascii=False),
                json.dumps(_DEFAULT_PREFERENCES),
                now,
                now,
            ),
            id_column="user_id",
        )
    except Exception as exc:
        # Lost a race against a concurrent registration.
        if is_unique_violation(exc):
            raise unique_violation_error(exc)
        raise

    row = get_user_by_id(conn, user_id)
    assert row is not None
    return public_user(row)


def register_user(
    conn: Any,
    *,
    username: str,
    email: str,
    password: str,
    role: str = "user",
    profile: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    """Public self-serve registration (users and booksellers only)."""
    u = validate_username(username)
    validate_password(password)
    try:
        r = parse_role(role)
    except ValueError:
        raise ValidationError("invalid_role", "Role must be either user or bookseller")
    if r not in SELF_REGISTER_ROLES:
        raise ValidationError("invalid_role", "Role must be either user or bookseller")

    user = create_user(conn, username=u, email=email, password=password, role=r, profile=profile)
    touch_last_login(conn, user["id"])
    return user


# -----------------------------
# Authenticate
# -----------------------------


def authenticate(conn: Any, email: str, password: str) -> Any:
    """Standard (email) login. Returns the user row or raises.

    Booksellers whose store is not approved are refused even with the right password.
    """
    row = get_user_by_email(conn, email)
    if row is None:
        raise NotFound("user_not_found", "User not found!")

    if not verify_password(password, str(row["password_hash"])):
        raise Unauthenticated("invalid_credentials", "Invalid email or password!")

    if int(row["is_active"] or 0) != 1:
        raise Forbidden("account_deactivated", "Account is deactivated. Please contact support.")

    role = parse_role(row["role"])
    if role is Role.BOOKSELLER:
        status = row["store_status"]
        if status != StoreStatus.APPROVED.value:
            if status == StoreStatus.REJECTED.value:
                message = "Bookseller application was rejected. Please contact administrator."
            else:
                message = "Bookseller account is pending approval. Please contact administrator."
            raise Forbidden("store_not_approved", message, storeStatus=status)
    elif role in (Role.USER, Role.ADMIN):
        pass
    else:  # pragma: no cover - Role is closed
        raise Forbidden("invalid_role")

    return row


def authenticate_admin(conn: Any, username: str, password: str) -> Any:
    u = normalize_username(username)
    row = conn.execute(
        "SELECT * FROM users WHERE username=? AND role=?",
        (u, Role.ADMIN.value),
    ).fetchone()
    if row is None:
        raise NotFound("admin_not_found", "Admin account not found!")
    if not verify_password(password, str(row["password_hash"])):
        raise Unauthenticated("invalid_credentials", "Invalid credentials!")
    if int(row["is_active"] or 0) != 1:
        raise Forbidden("account_deactivated", "Admin account is deactivated!")
    return row


def touch_last_login(conn: Any, user_id: int) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET last_login_at=?, updated_at=? WHERE user_id=?",
        (now, now, int(user_id)),
    )


# -----------------------------
# Self-service updates
# -----------------------------


def update_profile(
    conn: Any,
    user_id: int,
    *,
    username: str | None = None,
    email: str | None = None,
    profile: Dict[str, Any] | None = None,
    preferences: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    """Update the caller's own account.

    Role and store status are never writable here; the store status only moves
    through the approval workflow.
    """
    row = get_user_by_id(conn, user_id)
    if row is None:
        raise NotFound("user_not_found", "User not found")

    fields: list[tuple[str, Any]] = []

    if username is not None:
        u = validate_username(username)
        clash = conn.execute(
            "SELECT 1 FROM users WHERE username=? AND user_id<>?",
            (u, int(user_id)),
        ).fetchone()
        if clash is not None:
            raise ValidationError("username_exists", "Username is already taken")
        fields.append(("username", u))

    if email is not None:
        e = normalize_email(email)
        if not e:
            raise ValidationError("email_blank", "Email is required")
        clash = conn.execute(
            "SELECT 1 FROM users WHERE email=? AND user_id<>?",
            (e, int(user_id)),
        ).fetchone()
        if clash is not None:
            raise ValidationError("email_exists", "Email is already registered")
        fields.append(("email", e))

    if profile is not None:
        if row["role"] == Role.BOOKSELLER.value and "storeName" in profile:
            store_name = str(profile.get("storeName") or "").strip()
            if not store_name:
                raise ValidationError("store_name_required", "Store name is required for booksellers")
            if store_name_taken(conn, store_name, exclude_user_id=int(user_id)):
                raise ValidationError("store_name_taken", "Store name is already taken")
            fields.append(("store_name", store_name))
        merged = _loads(row["profile_json"])
        merged.update(_clean_profile(profile))
        fields.append(("profile_json", json.dumps(merged, ensure_ascii=False)))

    if preferences is not None:
        merged_prefs = dict(_DEFAULT_PREFERENCES)
        merged_prefs.update(_loads(row["preferences_json"]))
        for key in _DEFAULT_PREFERENCES:
            if key in preferences:
                merged_prefs[key] = bool(preferences[key])
        fields.append(("preferences_json", json.dumps(merged_prefs)))

    if fields:
        fields.append(("updated_at", utcnow_iso()))
        sets = ", ".join([f"{k}=?" for k, _ in fields])
        params = [v for _, v in fields] + [int(user_id)]
        conn.execute(f"UPDATE users SET {sets} WHERE user_id=?", params)

    updated = get_user_by_id(conn, user_id)
    assert updated is not None
    return public_user(updated)


def change_password(conn: Any, user_id: int, *, current_password: str, new_password: str) -> None:
    row = get_user_by_id(conn, user_id)
    if row is None:
        raise NotFound("user_not_found", "User not found")
    if not verify_password(current_password, str(row["password_hash"])):
        raise ValidationError("current_password_incorrect", "Current password is incorrect")
    validate_password(new_password)
    conn.execute(
        "UPDATE users SET password_hash=?, updated_at=? WHERE user_id=?",
        (hash_password(new_password), utcnow_iso(), int(user_id)),
    )


# -----------------------------
# Admin
# -----------------------------


def set_user_active(conn: Any, user_id: int, is_active: bool) -> Dict[str, Any]:
    """Soft delete / reactivate. Takes effect on the user's very next request."""
    cur = conn.execute(
        "UPDATE users SET is_active=?, updated_at=? WHERE user_id=?",
        (1 if is_active else 0, utcnow_iso(), int(user_id)),
    )
    if cur.rowcount == 0:
        raise NotFound("user_not_found", "User not found")
    row = get_user_by_id(conn, user_id)
    assert row is not None
    return public_user(row)


def paginate(total: int, page: int, limit: int) -> Dict[str, Any]:
    total_pages = int(math.ceil(total / limit)) if limit > 0 else 0
    return {
        "currentPage": page,
        "totalPages": total_pages,
        "total": total,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }


def list_users(
    conn: Any,
    *,
    role: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    where: List[str] = []
    params: List[Any] = []
    if role:
        try:
            r = parse_role(role)
        except ValueError:
            raise ValidationError("invalid_role", "Unknown role filter")
        where.append("role=?")
        params.append(r.value)
    q = (search or "").strip().lower()
    if q:
        where.append("(LOWER(username) LIKE ? OR LOWER(email) LIKE ?)")
        params.extend([f"%{q}%", f"%{q}%"])
    clause = f"WHERE {' AND '.join(where)}" if where else ""

    total = int(conn.execute(f"SELECT COUNT(*) AS n FROM users {clause}", tuple(params)).fetchone()["n"])
    rows = conn.execute(
        f"SELECT * FROM users {clause} ORDER BY created_at DESC, user_id DESC LIMIT ? OFFSET ?",
        tuple(params + [limit, (page - 1) * limit]),
    ).fetchall()

    counts = {r.value: 0 for r in Role}
    for r in conn.execute("SELECT role, COUNT(*) AS n FROM users GROUP BY role").fetchall():
        counts[str(r["role"])] = int(r["n"])

    return {
        "users": [public_user(r) for r in rows],
        "pagination": paginate(total, page, limit),
        "stats": {
            "total": total,
            "users": counts[Role.USER.value],
            "booksellers": counts[Role.BOOKSELLER.value],
            "admins": counts[Role.ADMIN.value],
        },
    }


def get_user_detail(conn: Any, user_id: int) -> Dict[str, Any]:
    row = get_user_by_id(conn, user_id)
    if row is None:
        raise NotFound("user_not_found", "User not found")
    out: Dict[str, Any] = {"user": public_user(row)}
    if row["role"] == Role.BOOKSELLER.value:
        out["totalBooks"] = int(
            conn.execute("SELECT COUNT(*) AS n FROM books WHERE seller_id=?", (int(user_id),)).fetchone()["n"]
        )
    return out


def bootstrap_admin_if_needed(cfg: Config) -> Optional[Dict[str, Any]]:
    """Create the first admin user if the users table is empty.

    Controlled via environment variables so a new clone has a deterministic way to log in.

    - AUTH_BOOTSTRAP_ADMIN_USERNAME (default: admin)
    - AUTH_BOOTSTRAP_ADMIN_EMAIL (default: admin@example.com)
    - AUTH_BOOTSTRAP_ADMIN_PASSWORD (default: admin)

    This only runs when there are 0 rows in `users`.
    """

    with connect(cfg.DB_DSN) as conn:
        n = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
        if int(n) > 0:
            return None

        username = normalize_username(cfg.AUTH_BOOTSTRAP_ADMIN_USERNAME or "")
        email = normalize_email(cfg.AUTH_BOOTSTRAP_ADMIN_EMAIL or "")
        password = cfg.AUTH_BOOTSTRAP_ADMIN_PASSWORD

        # If env explicitly clears these, don't create anything.
        if not username or not email or not password:
            return None

        return create_user(conn, username=username, email=email, password=password, role=Role.ADMIN)
