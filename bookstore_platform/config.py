import os
from dataclasses import dataclass
from typing import Optional

# Optional: load a local .env file if present.
try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    # If python-dotenv isn't installed or .env isn't present, that's fine.
    pass


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Returns:
      - True/False if the env var is set to a recognizable value
      - default if unset or unrecognized

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    Built once at startup and attached to `app.state.cfg`. Request handlers and
    auth dependencies read it from there; nothing re-reads the environment per call.

    IMPORTANT: Provide secrets via environment variables or a .env file.
    Do not hardcode secrets in source code.
    """

    # -----------------
    # Core
    # -----------------
    # Preferred: set BOOKSTORE_DATABASE_URL (or DATABASE_URL) to use Postgres.
    # Fallback: BOOKSTORE_DB_PATH for SQLite.
    DB_DSN: str = (
        os.environ.get("BOOKSTORE_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or os.environ.get("BOOKSTORE_DB_PATH", "./bookstore.sqlite")
    )

    # -----------------
    # Auth (JWT)
    # -----------------
    # NOTE: In dev, this defaults to a fixed string so you can get started.
    # In production, you MUST set AUTH_JWT_SECRET to a strong random value.
    AUTH_JWT_SECRET: str = os.environ.get("AUTH_JWT_SECRET", "dev_change_me")
    AUTH_TOKEN_EXPIRE_MINUTES: int = int(os.environ.get("AUTH_TOKEN_EXPIRE_MINUTES", "10080"))  # 7 days
    AUTH_ADMIN_TOKEN_EXPIRE_MINUTES: int = int(os.environ.get("AUTH_ADMIN_TOKEN_EXPIRE_MINUTES", "60"))

    # Bootstrap first admin user if users table is empty
    AUTH_BOOTSTRAP_ADMIN_USERNAME: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_USERNAME", "admin")
    AUTH_BOOTSTRAP_ADMIN_EMAIL: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_EMAIL", "admin@example.com")
    AUTH_BOOTSTRAP_ADMIN_PASSWORD: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_PASSWORD", "admin")

    # -----------------
    # Rate limiting (fixed window, per client address)
    # -----------------
    # "auth" guards register/login endpoints, "general" everything else that is authenticated.
    RATE_LIMIT_ENABLED: bool = _env_bool("RATE_LIMIT_ENABLED", True) is True
    RATE_LIMIT_WINDOW_SECONDS: int = int(os.environ.get("RATE_LIMIT_WINDOW_SECONDS", "900"))  # 15 minutes
    RATE_LIMIT_AUTH_MAX: int = int(os.environ.get("RATE_LIMIT_AUTH_MAX", "5"))
    RATE_LIMIT_GENERAL_MAX: int = int(os.environ.get("RATE_LIMIT_GENERAL_MAX", "100"))

    # -----------------
    # Mail (SMTP)
    # -----------------
    # Mail is only sent when SMTP_HOST and MAIL_FROM are set. Delivery is fire-and-forget.
    SMTP_HOST: str | None = (os.environ.get("SMTP_HOST") or "").strip() or None
    SMTP_PORT: int = int(os.environ.get("SMTP_PORT", "587"))
    SMTP_USERNAME: str | None = os.environ.get("SMTP_USERNAME")
    SMTP_PASSWORD: str | None = os.environ.get("SMTP_PASSWORD")
    SMTP_STARTTLS: bool = _env_bool("SMTP_STARTTLS", True) is True
    MAIL_FROM: str | None = (os.environ.get("MAIL_FROM") or "").strip() or None

    # -----------------
    # CORS (development)
    # -----------------
    # If you develop with Vite on :5173 and API on :5000, allow that origin.
    CORS_ALLOW_ORIGINS: str = os.environ.get(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173",
    )


def load_config() -> Config:
    return Config()
