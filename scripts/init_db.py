import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from bookstore_platform.config import load_config
from bookstore_platform.db import init_db
from bookstore_platform.auth.crud import bootstrap_admin_if_needed


def main() -> None:
    cfg = load_config()
    init_db(cfg.DB_DSN)
    boot = bootstrap_admin_if_needed(cfg)
    if boot:
        print(f"Bootstrapped admin: {boot['username']} <{boot['email']}>")
    print(f"DB initialized: {cfg.DB_DSN}")


if __name__ == "__main__":
    main()
