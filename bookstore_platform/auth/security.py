from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from passlib.context import CryptContext

from bookstore_platform.errors import InvalidToken


_pwd = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
_JWT_ALG = "HS256"


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("password_blank")
    return _pwd.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return _pwd.verify(password, password_hash)
    except Exception:
        return False


def create_access_token(
    *,
    secret: str,
    user_id: int,
    username: str,
    role: str,
    expires_minutes: int,
    email: Optional[str] = None,
) -> str:
    """Sign a session token.

    `email` is omitted from admin tokens (pass None). The claims are only a hint:
    every request re-reads the user row, so role changes apply without reissuing.
    """
    if not secret:
        raise ValueError("jwt_secret_blank")

    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=max(1, int(expires_minutes)))

    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "id": int(user_id),
        "username": username,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, secret, algorithm=_JWT_ALG)


def decode_access_token(*, token: str, secret: str) -> Dict[str, Any]:
    """Verify signature + expiry and return the claims.

    Malformed, tampered and expired tokens all raise the same InvalidToken so callers
    cannot tell which check failed.
    """
    if not secret:
        raise ValueError("jwt_secret_blank")
    if not token:
        raise InvalidToken("token_invalid")
    try:
        return jwt.decode(token, secret, algorithms=[_JWT_ALG])
    except jwt.InvalidTokenError:
        raise InvalidToken("token_invalid")
