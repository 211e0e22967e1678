"""Authentication / authorization.

- Users table (username/email/password hash + role + bookseller store status)
- JWT access tokens, sent as `Authorization: Bearer <token>`

Token claims are only a hint. Every protected request reloads the user row, so
deactivation, role changes and store approval decisions apply immediately without
reissuing tokens.
"""

from .deps import (
    get_current_user,
    require_admin,
    require_approved_bookseller,
    require_role,
    require_seller,
    verify_session,
)
from .crud import bootstrap_admin_if_needed, create_user, register_user

__all__ = [
    "get_current_user",
    "require_admin",
    "require_approved_bookseller",
    "require_role",
    "require_seller",
    "verify_session",
    "bootstrap_admin_if_needed",
    "create_user",
    "register_user",
]
