from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    USER = "user"
    BOOKSELLER = "bookseller"
    ADMIN = "admin"


class StoreStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class BookStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SOLD = "sold"


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Roles a visitor may pick for themselves. Admins are only created by bootstrap/scripts.
SELF_REGISTER_ROLES = (Role.USER, Role.BOOKSELLER)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, re-derived from the live user row on every request."""

    id: int
    username: str
    email: Optional[str]
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role.value,
        }


def enum_text(value: Any) -> str:
    # str() of a str-mixin Enum member is "Role.USER", not its value.
    if isinstance(value, Enum):
        value = value.value
    return str(value or "").strip().lower()


def parse_role(value: Any) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(enum_text(value))
    except ValueError:
        raise ValueError(f"unknown_role: {value!r}")


def parse_store_status(value: Any) -> Optional[StoreStatus]:
    if value is None or value == "":
        return None
    return StoreStatus(enum_text(value))
