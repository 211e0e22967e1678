"""Bookseller store approval workflow.

States: pending (assigned at registration) -> approved | rejected.
Admins may approve or reject from any state, repeatedly; there is no terminal state.
Every applied decision is appended to `store_status_events` so flip-flops stay auditable.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from bookstore_platform.config import Config
from bookstore_platform.db import insert_returning_id
from bookstore_platform.errors import Forbidden, NotFound, ValidationError
from bookstore_platform.mail import send_mail_async, store_decision_email
from bookstore_platform.models import ApprovalAction, Principal, Role, StoreStatus, enum_text
from bookstore_platform.util.time import utcnow_iso

from .crud import paginate, public_user


def _debug(msg: str) -> None:
    print(f"[approval] {msg}")


_TARGET_STATE = {
    ApprovalAction.APPROVE: StoreStatus.APPROVED,
    ApprovalAction.REJECT: StoreStatus.REJECTED,
}


def parse_action(action: Any) -> ApprovalAction:
    try:
        return ApprovalAction(enum_text(action))
    except ValueError:
        raise ValidationError("invalid_action", "Action must be either 'approve' or 'reject'")


def next_status(current: Optional[StoreStatus], action: ApprovalAction) -> StoreStatus:
    """Transition function. Total over (state, action): both actions are valid from every state."""
    return _TARGET_STATE[action]


@dataclass(frozen=True)
class Decision:
    """Outcome of one admin decision, returned before the transaction commits."""

    bookseller: Dict[str, Any]
    prior: Optional[StoreStatus]
    new: StoreStatus
    email: str
    username: str
    store_name: Optional[str]

    @property
    def changed(self) -> bool:
        return self.prior is not self.new


def transition_approval(
    conn: Any,
    admin: Principal,
    target_user_id: int,
    action: ApprovalAction | str,
) -> Decision:
    """Apply an admin decision to a bookseller's store status.

    Idempotent: approving an approved store keeps it approved (the decision is still logged).
    No mail is sent here; call notify_decision() once the transaction has committed.
    """
    if admin.role is not Role.ADMIN:
        raise Forbidden(
            "admin_required",
            "Access denied. Admin privileges required.",
            userRole=admin.role.value,
        )

    act = parse_action(action)

    row = conn.execute(
        "SELECT * FROM users WHERE user_id=? AND role=?",
        (int(target_user_id), Role.BOOKSELLER.value),
    ).fetchone()
    if row is None:
        raise NotFound("bookseller_not_found", "Bookseller not found")

    prior = StoreStatus(row["store_status"]) if row["store_status"] else None
    new = next_status(prior, act)
    now = utcnow_iso()

    conn.execute(
        "UPDATE users SET store_status=?, updated_at=? WHERE user_id=? AND role=?",
        (new.value, now, int(target_user_id), Role.BOOKSELLER.value),
    )
    insert_returning_id(
        conn,
        """
        INSERT INTO store_status_events (user_id, actor_id, action, prior_status, new_status, created_at)
        VALUES (?,?,?,?,?,?)
        """,
        (
            int(target_user_id),
            admin.id,
            act.value,
            prior.value if prior else None,
            new.value,
            now,
        ),
        id_column="event_id",
    )
    _debug(
        f"bookseller user_id={target_user_id} {prior.value if prior else None} -> {new.value} "
        f"by admin user_id={admin.id}"
    )

    updated = conn.execute("SELECT * FROM users WHERE user_id=?", (int(target_user_id),)).fetchone()
    u = public_user(updated)
    return Decision(
        bookseller={k: u[k] for k in ("id", "username", "email", "profile")},
        prior=prior,
        new=new,
        email=str(row["email"]),
        username=str(row["username"]),
        store_name=row["store_name"],
    )


def notify_decision(cfg: Config, decision: Decision) -> Optional[threading.Thread]:
    """Mail the bookseller about a committed decision. Repeats of the same decision stay silent."""
    if not decision.changed:
        return None
    subject, html = store_decision_email(
        username=decision.username,
        store_name=decision.store_name,
        approved=(decision.new is StoreStatus.APPROVED),
    )
    return send_mail_async(cfg, to=decision.email, subject=subject, html=html)


def list_pending_booksellers(conn: Any) -> List[Dict[str, Any]]:
    rows = conn.execute(
        "SELECT * FROM users WHERE role=? AND store_status=? ORDER BY created_at ASC, user_id ASC",
        (Role.BOOKSELLER.value, StoreStatus.PENDING.value),
    ).fetchall()
    return [public_user(r) for r in rows]


def list_booksellers(
    conn: Any,
    *,
    status: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    where = ["role=?"]
    params: List[Any] = [Role.BOOKSELLER.value]
    if status:
        try:
            st = StoreStatus(status.strip().lower())
        except ValueError:
            raise ValidationError("invalid_status", "Status must be pending, approved or rejected")
        where.append("store_status=?")
        params.append(st.value)
    q = (search or "").strip().lower()
    if q:
        where.append("(LOWER(store_name) LIKE ? OR LOWER(email) LIKE ? OR LOWER(username) LIKE ?)")
        params.extend([f"%{q}%"] * 3)
    clause = " AND ".join(where)

    total = int(conn.execute(f"SELECT COUNT(*) AS n FROM users WHERE {clause}", tuple(params)).fetchone()["n"])
    rows = conn.execute(
        f"SELECT * FROM users WHERE {clause} ORDER BY created_at DESC, user_id DESC LIMIT ? OFFSET ?",
        tuple(params + [limit, (page - 1) * limit]),
    ).fetchall()

    counts = {s.value: 0 for s in StoreStatus}
    for r in conn.execute(
        "SELECT store_status, COUNT(*) AS n FROM users WHERE role=? GROUP BY store_status",
        (Role.BOOKSELLER.value,),
    ).fetchall():
        if r["store_status"] in counts:
            counts[str(r["store_status"])] = int(r["n"])

    return {
        "booksellers": [public_user(r) for r in rows],
        "pagination": paginate(total, page, limit),
        "stats": {"total": total, **counts},
    }


def list_status_events(conn: Any, bookseller_id: int) -> List[Dict[str, Any]]:
    row = conn.execute(
        "SELECT 1 FROM users WHERE user_id=? AND role=?",
        (int(bookseller_id), Role.BOOKSELLER.value),
    ).fetchone()
    if row is None:
        raise NotFound("bookseller_not_found", "Bookseller not found")

    rows = conn.execute(
        """
        SELECT e.event_id, e.action, e.prior_status, e.new_status, e.created_at,
               e.actor_id, a.username AS actor_username
        FROM store_status_events e
        LEFT JOIN users a ON a.user_id = e.actor_id
        WHERE e.user_id=?
        ORDER BY e.event_id ASC
        """,
        (int(bookseller_id),),
    ).fetchall()
    return [
        {
            "id": int(r["event_id"]),
            "action": r["action"],
            "priorStatus": r["prior_status"],
            "newStatus": r["new_status"],
            "actorId": int(r["actor_id"]),
            "actorUsername": r["actor_username"],
            "createdAt": r["created_at"],
        }
        for r in rows
    ]
