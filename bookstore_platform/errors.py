"""Error taxonomy shared by the auth core, the catalog and the API layer.

Every error carries a stable snake_case `detail` code (what frontends switch on),
a human readable `message` and optional extra fields that are merged into the
JSON body (e.g. `bookOwner` for ownership failures).
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BookstoreError(Exception):
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, detail: str, message: Optional[str] = None, **extra: Any) -> None:
        super().__init__(detail)
        self.detail = detail
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "detail": self.detail, "message": self.message}
        body.update(self.extra)
        return body


class Unauthenticated(BookstoreError):
    """No credential, or credentials that do not match."""

    status_code = 401
    default_message = "Access denied. No token provided"


class InvalidToken(BookstoreError):
    """Malformed, badly signed or expired token. Deliberately a single kind."""

    status_code = 403
    default_message = "Invalid or expired token"


class Forbidden(BookstoreError):
    status_code = 403
    default_message = "Access denied"


class NotFound(BookstoreError):
    status_code = 404
    default_message = "Not found"


class ValidationError(BookstoreError):
    status_code = 400
    default_message = "Validation failed"


class DuplicateFavorite(BookstoreError):
    status_code = 400
    default_message = "Book already in favorites"


class RateLimited(BookstoreError):
    status_code = 429
    default_message = "Too many requests, please try again later."
