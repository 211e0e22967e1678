from __future__ import annotations

from typing import Any

from bookstore_platform.errors import Forbidden
from bookstore_platform.models import Principal, Role


def owner_id_of(resource: Any, *, owner_field: str = "seller_id") -> int | None:
    """Owner id from a dict or a DB row (sqlite3.Row has keys() but no get())."""
    if owner_field not in resource.keys():
        return None
    raw = resource[owner_field]
    if raw is None:
        return None
    return int(raw)


def check_ownership(
    principal: Principal,
    resource: Any,
    *,
    owner_field: str = "seller_id",
    action: str = "update",
    noun: str = "book",
) -> None:
    """Only the owner or an admin may touch a resource.

    A refusal carries `<noun>Owner: false` (e.g. `bookOwner`) in the error body.
    """
    if principal.role is Role.ADMIN:
        return
    if principal.role in (Role.USER, Role.BOOKSELLER):
        if owner_id_of(resource, owner_field=owner_field) == principal.id:
            return
        raise Forbidden(
            "not_owner",
            f"Not authorized to {action} this {noun}",
            userRole=principal.role.value,
            **{f"{noun}Owner": False},
        )
    raise Forbidden("role_forbidden")  # pragma: no cover - Role is closed
