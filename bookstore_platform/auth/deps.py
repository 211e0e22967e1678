from __future__ import annotations

from typing import Any, Callable, Iterable, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bookstore_platform.config import Config
from bookstore_platform.db import connect
from bookstore_platform.errors import Forbidden, InvalidToken, NotFound, Unauthenticated
from bookstore_platform.models import Principal, Role, StoreStatus, parse_role

from .security import decode_access_token


_bearer = HTTPBearer(auto_error=False)


def get_cfg(request: Request) -> Config:
    cfg = getattr(request.app.state, "cfg", None)
    if cfg is None:
        raise HTTPException(status_code=500, detail="server_config_missing")
    return cfg


# -----------------------------
# Session verification
# -----------------------------


def verify_session(conn: Any, token: Optional[str], *, secret: str) -> Principal:
    """Turn a bearer token into a Principal built from the live user row.

    The signature check alone is not enough: deactivation and role changes made
    after the token was issued must apply immediately, so we always reload the user.
    """
    if not token:
        raise Unauthenticated("missing_token", "Access Denied. No token provided")

    payload = decode_access_token(token=token, secret=secret)

    sub = payload.get("sub")
    if not sub:
        raise InvalidToken("token_invalid")
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise InvalidToken("token_invalid")

    row = conn.execute(
        "SELECT user_id, username, email, role, is_active FROM users WHERE user_id=?",
        (user_id,),
    ).fetchone()
    if row is None:
        raise NotFound("user_not_found", "User not found")
    if int(row["is_active"] or 0) != 1:
        raise Forbidden("account_deactivated", "Account is deactivated")

    return Principal(
        id=int(row["user_id"]),
        username=str(row["username"]),
        email=row["email"],
        role=parse_role(row["role"]),
    )


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Principal:
    """Authenticate a request from `Authorization: Bearer <jwt>`."""
    cfg = get_cfg(request)
    token = credentials.credentials if credentials is not None else None
    with connect(cfg.DB_DSN) as conn:
        principal = verify_session(conn, token, secret=cfg.AUTH_JWT_SECRET)
    request.state.principal = principal
    return principal


def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Optional[Principal]:
    """Like get_current_user, but for public routes.

    Anonymous callers, and callers whose token no longer resolves to an active
    user (expired, garbage, deleted, deactivated), are served as anonymous.
    """
    if credentials is None or not credentials.credentials:
        return None
    try:
        return get_current_user(request, credentials)
    except (InvalidToken, NotFound, Forbidden):
        return None


# -----------------------------
# Role gate
# -----------------------------


def check_role(principal: Principal, allowed: Iterable[Role]) -> None:
    allowed_set = frozenset(allowed)
    if principal.role not in allowed_set:
        names = "/".join(sorted(r.value for r in allowed_set))
        raise Forbidden(
            "role_forbidden",
            f"Access denied. {names} role required.",
            userRole=principal.role.value,
        )


def check_approved_bookseller(conn: Any, principal: Principal) -> None:
    """Bookseller whose store is approved *right now*.

    Approval can change at any time through the admin workflow, so the status is
    read from the store on every call and never taken from the token.
    """
    if principal.role is not Role.BOOKSELLER:
        raise Forbidden(
            "bookseller_required",
            "Access denied. Bookseller role required.",
            userRole=principal.role.value,
        )

    row = conn.execute(
        "SELECT store_status FROM users WHERE user_id=? AND role=?",
        (principal.id, Role.BOOKSELLER.value),
    ).fetchone()
    if row is None:
        raise NotFound("user_not_found", "User not found")
    if row["store_status"] != StoreStatus.APPROVED.value:
        raise Forbidden(
            "store_not_approved",
            "Your bookseller account is pending approval. Please contact administrator.",
            storeStatus=row["store_status"],
        )


def check_seller(conn: Any, principal: Principal) -> None:
    """May list books for sale: admins always, booksellers once approved."""
    if principal.role is Role.ADMIN:
        return
    if principal.role is Role.BOOKSELLER:
        check_approved_bookseller(conn, principal)
        return
    if principal.role is Role.USER:
        raise Forbidden(
            "seller_required",
            "Access denied. Bookseller or Admin role required",
            userRole=principal.role.value,
        )
    raise Forbidden("role_forbidden")  # pragma: no cover - Role is closed


def require_role(*roles: Role) -> Callable[..., Principal]:
    """Dependency factory: `Depends(require_role(Role.ADMIN))`."""

    def _dep(principal: Principal = Depends(get_current_user)) -> Principal:
        check_role(principal, roles)
        return principal

    return _dep


require_admin = require_role(Role.ADMIN)


def require_approved_bookseller(
    request: Request,
    principal: Principal = Depends(get_current_user),
) -> Principal:
    cfg = get_cfg(request)
    with connect(cfg.DB_DSN) as conn:
        check_approved_bookseller(conn, principal)
    return principal


def require_seller(
    request: Request,
    principal: Principal = Depends(get_current_user),
) -> Principal:
    cfg = get_cfg(request)
    with connect(cfg.DB_DSN) as conn:
        check_seller(conn, principal)
    return principal
