from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

from bookstore_platform.config import Config, load_config
from bookstore_platform.db import connect, init_db
from bookstore_platform.errors import BookstoreError, NotFound, ValidationError
from bookstore_platform.models import Principal, Role, StoreStatus
from bookstore_platform.ratelimit import build_limiters, rate_limit
from bookstore_platform.util.time import utcnow_iso

from bookstore_platform.auth import (
    get_current_user,
    require_admin,
    require_approved_bookseller,
    require_seller,
)
from bookstore_platform.auth.approval import (
    list_booksellers,
    list_pending_booksellers,
    list_status_events,
    notify_decision,
    transition_approval,
)
from bookstore_platform.auth.crud import (
    authenticate,
    authenticate_admin,
    bootstrap_admin_if_needed,
    change_password,
    get_user_by_id,
    get_user_detail,
    list_users,
    public_user,
    register_user,
    set_user_active,
    touch_last_login,
    update_profile,
)
from bookstore_platform.auth.deps import get_cfg, get_optional_user
from bookstore_platform.auth.security import create_access_token
from bookstore_platform.catalog.books import (
    create_book,
    delete_book,
    get_book,
    list_all_books,
    list_books,
    list_books_by_seller,
    public_book,
    seller_stats,
    set_book_features,
    set_book_status,
    update_book,
)
from bookstore_platform.catalog.favorites import (
    add_favorite,
    favorite_count,
    is_favorited,
    list_favorites,
    remove_favorite,
)
from bookstore_platform.catalog.orders import (
    create_order,
    get_order,
    list_my_orders,
    list_orders_by_email,
    recent_orders_for_seller,
    seller_order_stats,
    set_order_status,
)


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


auth_limit = Depends(rate_limit("auth"))
general_limit = Depends(rate_limit("general"))


def _issue_token(cfg: Config, row: Any, *, admin_session: bool = False) -> str:
    if admin_session:
        # Admin sessions are short-lived and carry no email claim.
        return create_access_token(
            secret=cfg.AUTH_JWT_SECRET,
            user_id=int(row["user_id"]),
            username=str(row["username"]),
            role=str(row["role"]),
            expires_minutes=int(cfg.AUTH_ADMIN_TOKEN_EXPIRE_MINUTES),
        )
    return create_access_token(
        secret=cfg.AUTH_JWT_SECRET,
        user_id=int(row["user_id"]),
        username=str(row["username"]),
        role=str(row["role"]),
        email=str(row["email"]),
        expires_minutes=int(cfg.AUTH_TOKEN_EXPIRE_MINUTES),
    )


# -----------------------------
# Health
# -----------------------------

health_router = APIRouter()


@health_router.get("/health")
def health(cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    database = "connected"
    try:
        with connect(cfg.DB_DSN) as conn:
            conn.execute("SELECT 1").fetchone()
    except Exception as e:
        _debug(f"health check: database unavailable: {e}")
        database = "disconnected"
    return {"status": "ok", "timestamp": utcnow_iso(), "database": database}


# -----------------------------
# Auth
# -----------------------------

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    username: str
    email: EmailStr
    password: str
    role: str = "user"  # user|bookseller
    profile: Dict[str, Any] = Field(default_factory=dict)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class AdminLoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ProfileUpdateRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    profile: Optional[Dict[str, Any]] = None
    preferences: Optional[Dict[str, Any]] = None


class ChangePasswordRequest(BaseModel):
    currentPassword: str = Field(min_length=1)
    newPassword: str


class ApprovalRequest(BaseModel):
    action: str  # approve|reject


class UserStatusRequest(BaseModel):
    isActive: bool


@auth_router.post("/register", status_code=201, dependencies=[auth_limit])
def auth_register(payload: RegisterRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    """Self-serve registration for users and booksellers.

    Booksellers start with store status `pending` and cannot log in until an admin approves.
    """
    with connect(cfg.DB_DSN) as conn:
        u = register_user(
            conn,
            username=payload.username,
            email=str(payload.email),
            password=payload.password,
            role=payload.role,
            profile=payload.profile,
        )
        row = get_user_by_id(conn, u["id"])
        token = _issue_token(cfg, row)

    if u["role"] == Role.BOOKSELLER.value:
        message = "Bookseller registered successfully! Your account is pending approval."
    else:
        message = "User registered successfully!"
    return {"success": True, "message": message, "token": token, "user": u}


@auth_router.post("/login", dependencies=[auth_limit])
def auth_login(payload: LoginRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        row = authenticate(conn, str(payload.email), payload.password)
        touch_last_login(conn, int(row["user_id"]))
        token = _issue_token(cfg, row)
        u = public_user(get_user_by_id(conn, int(row["user_id"])))
    return {"success": True, "message": "Login successful", "token": token, "user": u}


@auth_router.post("/admin/login", dependencies=[auth_limit])
def auth_admin_login(payload: AdminLoginRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        row = authenticate_admin(conn, payload.username, payload.password)
        touch_last_login(conn, int(row["user_id"]))
        token = _issue_token(cfg, row, admin_session=True)
        u = public_user(get_user_by_id(conn, int(row["user_id"])))
    _debug(f"admin login: username={u['username']}")
    return {"success": True, "message": "Admin authentication successful", "token": token, "user": u}


@auth_router.get("/profile", dependencies=[general_limit])
def auth_profile(
    principal: Principal = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_id(conn, principal.id)
        if row is None:
            raise NotFound("user_not_found", "User not found")
        return {"success": True, "user": public_user(row)}


@auth_router.put("/profile", dependencies=[general_limit])
def auth_update_profile(
    payload: ProfileUpdateRequest,
    principal: Principal = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        u = update_profile(
            conn,
            principal.id,
            username=payload.username,
            email=str(payload.email) if payload.email is not None else None,
            profile=payload.profile,
            preferences=payload.preferences,
        )
    return {"success": True, "message": "Profile updated successfully", "user": u}


@auth_router.put("/change-password", dependencies=[general_limit])
def auth_change_password(
    payload: ChangePasswordRequest,
    principal: Principal = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        change_password(
            conn,
            principal.id,
            current_password=payload.currentPassword,
            new_password=payload.newPassword,
        )
    return {"success": True, "message": "Password changed successfully"}


@auth_router.get("/verify-token", dependencies=[general_limit])
def auth_verify_token(
    principal: Principal = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_id(conn, principal.id)
        if row is None:
            raise NotFound("user_not_found", "User not found")
        u = public_user(row)
    return {
        "success": True,
        "message": "Token is valid",
        "user": {k: u[k] for k in ("id", "username", "email", "role", "profile")},
    }


# Admin: bookseller approval workflow


@auth_router.get("/booksellers/pending", dependencies=[general_limit])
def admin_pending_booksellers(
    _admin: Principal = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"success": True, "booksellers": list_pending_booksellers(conn)}


@auth_router.put("/booksellers/{user_id}/approve", dependencies=[general_limit])
def admin_approve_bookseller(
    user_id: int,
    payload: ApprovalRequest,
    admin: Principal = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        decision = transition_approval(conn, admin, user_id, payload.action)
    # Committed; only now tell the bookseller.
    notify_decision(cfg, decision)
    verb = "approved" if decision.new is StoreStatus.APPROVED else "rejected"
    return {
        "success": True,
        "message": f"Bookseller application {verb} successfully",
        "bookseller": decision.bookseller,
    }


@auth_router.get("/booksellers/{user_id}/history", dependencies=[general_limit])
def admin_bookseller_history(
    user_id: int,
    _admin: Principal = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"success": True, "events": list_status_events(conn, user_id)}


# Admin: user management


@auth_router.get("/admin/users", dependencies=[general_limit])
def admin_list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    role: Optional[str] = None,
    search: Optional[str] = None,
    _admin: Principal = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        data = list_users(conn, role=role, search=search, page=page, limit=limit)
    return {"success": True, "data": data}


@auth_router.get("/admin/booksellers", dependencies=[general_limit])
def admin_list_booksellers(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    search: Optional[str] = None,
    _admin: Principal = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        data = list_booksellers(conn, status=status, search=search, page=page, limit=limit)
    return {"success": True, "data": data}


@auth_router.get("/admin/users/{user_id}", dependencies=[general_limit])
def admin_get_user(
    user_id: int,
    _admin: Principal = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"success": True, "data": get_user_detail(conn, user_id)}


@auth_router.put("/admin/users/{user_id}/status", dependencies=[general_limit])
def admin_set_user_status(
    user_id: int,
    payload: UserStatusRequest,
    admin: Principal = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    if user_id == admin.id and not payload.isActive:
        raise ValidationError("cannot_deactivate_self", "Admins cannot deactivate their own account")
    with connect(cfg.DB_DSN) as conn:
        u = set_user_active(conn, user_id, payload.isActive)
    _debug(f"user_id={user_id} is_active={payload.isActive} by admin user_id={admin.id}")
    return {
        "success": True,
        "message": f"User {'activated' if payload.isActive else 'deactivated'} successfully",
        "data": u,
    }


# -----------------------------
# Books
# -----------------------------

books_router = APIRouter(prefix="/api/books", tags=["books"])


class BookCreateRequest(BaseModel):
    title: str
    author: str
    description: str
    category: str
    coverImage: str
    oldPrice: float = Field(ge=0)
    newPrice: float = Field(ge=0)
    stock: int = Field(0, ge=0)
    language: Optional[str] = None
    # Admin-only; ignored for booksellers.
    trending: Optional[bool] = None
    recommended: Optional[bool] = None


class BookUpdateRequest(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    coverImage: Optional[str] = None
    oldPrice: Optional[float] = Field(None, ge=0)
    newPrice: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    language: Optional[str] = None
    trending: Optional[bool] = None
    recommended: Optional[bool] = None


class BookStatusRequest(BaseModel):
    status: str  # active|inactive|sold


class BookFeaturesRequest(BaseModel):
    trending: Optional[bool] = None
    recommended: Optional[bool] = None


@books_router.get("")
def books_list(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    trending: Optional[bool] = None,
    recommended: Optional[bool] = None,
    minPrice: Optional[float] = Query(None, ge=0),
    maxPrice: Optional[float] = Query(None, ge=0),
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return list_books(
            conn,
            category=category,
            trending=trending,
            recommended=recommended,
            min_price=minPrice,
            max_price=maxPrice,
            sort_by=sortBy,
            sort_order=sortOrder,
            page=page,
            limit=limit,
        )


@books_router.get("/seller/{seller_id}")
def books_by_seller(
    seller_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return list_books_by_seller(conn, seller_id, page=page, limit=limit)


@books_router.post("/create-book", dependencies=[general_limit])
def books_create(
    payload: BookCreateRequest,
    principal: Principal = Depends(require_seller),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        book = create_book(conn, principal, payload.model_dump(exclude_none=True))
    return {"message": "Book posted successfully", "book": book}


@books_router.put("/edit/{book_id}", dependencies=[general_limit])
def books_update(
    book_id: int,
    payload: BookUpdateRequest,
    principal: Principal = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        book = update_book(conn, principal, book_id, payload.model_dump(exclude_unset=True))
    return {"message": "Book updated successfully", "book": book}


@books_router.patch("/admin/status/{book_id}", dependencies=[general_limit])
def books_set_status(
    book_id: int,
    payload: BookStatusRequest,
    _admin: Principal = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        book = set_book_status(conn, book_id, payload.status)
    return {"message": "Book status updated successfully", "book": book}


@books_router.patch("/admin/features/{book_id}", dependencies=[general_limit])
def books_set_features(
    book_id: int,
    payload: BookFeaturesRequest,
    _admin: Principal = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        book = set_book_features(conn, book_id, trending=payload.trending, recommended=payload.recommended)
    return {"message": "Book features updated successfully", "book": book, "updatedBy": "admin"}


@books_router.get("/admin/all-books", dependencies=[general_limit])
def books_admin_all(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    addedBy: Optional[str] = None,
    _admin: Principal = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        data = list_all_books(conn, status=status, added_by=addedBy, page=page, limit=limit)
    return {**data, "userRole": Role.ADMIN.value}


@books_router.get("/bookseller/my-books", dependencies=[general_limit])
def books_my_books(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(require_approved_bookseller),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        data = list_books_by_seller(conn, principal.id, status=None, page=page, limit=limit)
    return {**data, "userRole": principal.role.value}


@books_router.get("/{book_id}")
def books_get(
    book_id: int,
    viewer: Optional[Principal] = Depends(get_optional_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        row = get_book(conn, book_id)
        if row is None:
            raise NotFound("book_not_found", "Book not Found!")
        book = public_book(row)
        if viewer is not None:
            book["isFavorited"] = is_favorited(conn, viewer, book_id)
    return book


@books_router.delete("/{book_id}", dependencies=[general_limit])
def books_delete(
    book_id: int,
    principal: Principal = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        book = delete_book(conn, principal, book_id)
    return {"message": "Book deleted successfully", "book": book}


# -----------------------------
# Favorites
# -----------------------------

favorites_router = APIRouter(prefix="/api/favorites", tags=["favorites"])


@favorites_router.get("", dependencies=[general_limit])
def favorites_list(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return list_favorites(conn, principal, page=page, limit=limit)


@favorites_router.get("/check/{book_id}", dependencies=[general_limit])
def favorites_check(
    book_id: int,
    principal: Principal = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"isFavorited": is_favorited(conn, principal, book_id), "bookId": book_id}


@favorites_router.get("/count/{book_id}")
def favorites_count(book_id: int, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        if get_book(conn, book_id) is None:
            raise NotFound("book_not_found", "Book not found")
        return {"bookId": book_id, "favoriteCount": favorite_count(conn, book_id)}


@favorites_router.post("/{book_id}", status_code=201, dependencies=[general_limit])
def favorites_add(
    book_id: int,
    principal: Principal = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        favorite = add_favorite(conn, principal, book_id)
    return {"message": "Book added to favorites successfully", "favorite": favorite}


@favorites_router.delete("/{book_id}", dependencies=[general_limit])
def favorites_remove(
    book_id: int,
    principal: Principal = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        remove_favorite(conn, principal, book_id)
    return {"message": "Book removed from favorites successfully"}


# -----------------------------
# Orders
# -----------------------------

orders_router = APIRouter(prefix="/api/orders", tags=["orders"])


class OrderItemRequest(BaseModel):
    bookId: int
    quantity: int = Field(1, ge=1)


class OrderAddress(BaseModel):
    city: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    zipcode: Optional[str] = None


class OrderCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    address: OrderAddress = Field(default_factory=OrderAddress)
    products: List[OrderItemRequest] = Field(min_length=1)


class OrderStatusRequest(BaseModel):
    status: str  # pending|completed|cancelled


@orders_router.post("", status_code=201, dependencies=[general_limit])
def orders_create(
    payload: OrderCreateRequest,
    principal: Principal = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        order = create_order(
            conn,
            principal,
            name=payload.name,
            phone=payload.phone,
            address=payload.address.model_dump(exclude_none=True),
            items=[p.model_dump() for p in payload.products],
        )
    _debug(f"order_id={order['id']} placed by user_id={principal.id} total={order['totalPrice']}")
    return {"message": "Order placed successfully", "order": order}


@orders_router.get("", dependencies=[general_limit])
def orders_mine(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return list_my_orders(conn, principal, page=page, limit=limit)


@orders_router.get("/email/{email}", dependencies=[general_limit])
def orders_by_email(
    email: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return list_orders_by_email(conn, principal, email, page=page, limit=limit)


@orders_router.patch("/admin/status/{order_id}", dependencies=[general_limit])
def orders_set_status(
    order_id: int,
    payload: OrderStatusRequest,
    admin: Principal = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        order = set_order_status(conn, order_id, payload.status)
    _debug(f"order_id={order_id} status={order['status']} by admin user_id={admin.id}")
    return {"message": "Order status updated successfully", "order": order}


@orders_router.get("/{order_id}", dependencies=[general_limit])
def orders_get(
    order_id: int,
    principal: Principal = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return get_order(conn, principal, order_id)


# -----------------------------
# Bookseller dashboard (approved booksellers only)
# -----------------------------

bookseller_router = APIRouter(prefix="/api/bookseller", tags=["bookseller"])


@bookseller_router.get("/stats", dependencies=[general_limit])
def bookseller_stats(
    principal: Principal = Depends(require_approved_bookseller),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        data = {**seller_stats(conn, principal.id), **seller_order_stats(conn, principal.id)}
    return {"success": True, "data": data}


@bookseller_router.get("/orders/recent", dependencies=[general_limit])
def bookseller_recent_orders(
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(require_approved_bookseller),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"success": True, "orders": recent_orders_for_seller(conn, principal.id, limit=limit)}


@bookseller_router.get("/books", dependencies=[general_limit])
def bookseller_books(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    principal: Principal = Depends(require_approved_bookseller),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        data = list_books_by_seller(conn, principal.id, status=status, page=page, limit=limit)
    return {"success": True, "data": data}


@bookseller_router.get("/profile", dependencies=[general_limit])
def bookseller_profile(
    principal: Principal = Depends(require_approved_bookseller),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_id(conn, principal.id)
        if row is None:
            raise NotFound("user_not_found", "User not found")
        return {"success": True, "data": public_user(row)}


# -----------------------------
# App
# -----------------------------


def _validation_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        out.append({"field": ".".join(loc), "message": str(err.get("msg", ""))})
    return out


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BookstoreError)
    async def _bookstore_error(request: Request, exc: BookstoreError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "detail": "validation_failed",
                "message": "Validation failed",
                "errors": _validation_errors(exc),
            },
        )

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        _debug(f"unhandled error on {request.method} {request.url.path}: {exc!r}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "detail": "internal_error", "message": "Internal server error"},
        )


def create_app(cfg: Config | None = None) -> FastAPI:
    """Build the API. Config is resolved once here and shared via app.state."""
    cfg = cfg or load_config()
    app = FastAPI(title="Bookstore Marketplace API", version="0.1.0")
    app.state.cfg = cfg
    app.state.limiters = build_limiters(cfg)

    # CORS is mainly needed for local development (Vite on :5173 -> API on :5000).
    cors_origins = [o.strip() for o in (cfg.CORS_ALLOW_ORIGINS or "").split(",") if o.strip()]
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    _install_error_handlers(app)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(books_router)
    app.include_router(favorites_router)
    app.include_router(orders_router)
    app.include_router(bookseller_router)

    @app.on_event("startup")
    def _on_startup() -> None:
        # Ensure schema exists.
        init_db(cfg.DB_DSN)

        # Bootstrap first admin if needed (only when users table is empty)
        boot = bootstrap_admin_if_needed(cfg)
        if boot:
            _debug(
                f"Bootstrapped initial admin user: username={boot.get('username')} role={boot.get('role')}"
            )

    return app


app = create_app()
