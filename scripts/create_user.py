"""Create a user in the configured DB.

Usage:
  python scripts/create_user.py --username alice --email alice@example.com --password '...' --role admin
  python scripts/create_user.py --username acme --email acme@example.com --password '...' \
      --role bookseller --store-name "Acme Books" [--approve]

Booksellers start `pending`; pass --approve to approve the store right away
(the decision is recorded in the store status audit trail as made by the first admin).

NOTE: This is intended for local/dev. No password policy is applied.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from bookstore_platform.config import load_config
from bookstore_platform.db import init_db, connect
from bookstore_platform.auth.crud import create_user
from bookstore_platform.auth.approval import transition_approval
from bookstore_platform.models import Principal, Role


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--username", required=True)
    ap.add_argument("--email", required=True)
    ap.add_argument("--password", required=True)
    ap.add_argument("--role", choices=[r.value for r in Role], default="user")
    ap.add_argument("--store-name", default=None)
    ap.add_argument("--approve", action="store_true", help="approve the bookseller store immediately")
    args = ap.parse_args()

    cfg = load_config()
    init_db(cfg.DB_DSN)

    profile = {"storeName": args.store_name} if args.store_name else {}
    with connect(cfg.DB_DSN) as conn:
        u = create_user(
            conn,
            username=args.username,
            email=args.email,
            password=args.password,
            role=args.role,
            profile=profile,
        )
        if args.approve and u["role"] == Role.BOOKSELLER.value:
            admin_row = conn.execute(
                "SELECT user_id, username, email FROM users WHERE role=? AND is_active=1 ORDER BY user_id LIMIT 1",
                (Role.ADMIN.value,),
            ).fetchone()
            if admin_row is None:
                print("No active admin exists; bookseller left pending.")
            else:
                admin = Principal(
                    id=int(admin_row["user_id"]),
                    username=str(admin_row["username"]),
                    email=admin_row["email"],
                    role=Role.ADMIN,
                )
                decision = transition_approval(conn, admin, u["id"], "approve")
                u["profile"] = decision.bookseller["profile"]

    print("Created user:")
    print(u)


if __name__ == "__main__":
    main()
