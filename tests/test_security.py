from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from bookstore_platform.auth.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)
from bookstore_platform.errors import InvalidToken


SECRET = "unit-test-secret"


def test_token_carries_identity_claims():
    token = create_access_token(
        secret=SECRET, user_id=7, username="reader", role="user", email="reader@example.com", expires_minutes=60
    )
    claims = decode_access_token(token=token, secret=SECRET)
    assert claims["sub"] == "7"
    assert claims["id"] == 7
    assert claims["username"] == "reader"
    assert claims["email"] == "reader@example.com"
    assert claims["role"] == "user"
    assert claims["exp"] > claims["iat"]


def test_admin_style_token_has_no_email_claim():
    token = create_access_token(secret=SECRET, user_id=1, username="admin", role="admin", expires_minutes=60)
    assert "email" not in decode_access_token(token=token, secret=SECRET)


def test_expiry_is_honoured():
    token = create_access_token(secret=SECRET, user_id=1, username="u", role="user", expires_minutes=60)
    claims = jwt.decode(token, SECRET, algorithms=["HS256"])
    assert claims["exp"] - claims["iat"] == 3600


@pytest.mark.parametrize(
    "token",
    [
        "not-a-jwt",
        "",
        jwt.encode({"sub": "1"}, "some-other-secret", algorithm="HS256"),
        jwt.encode(
            {"sub": "1", "exp": int((datetime.now(timezone.utc) - timedelta(minutes=5)).timestamp())},
            SECRET,
            algorithm="HS256",
        ),
    ],
    ids=["malformed", "empty", "bad-signature", "expired"],
)
def test_every_failure_collapses_to_invalid_token(token):
    with pytest.raises(InvalidToken) as ei:
        decode_access_token(token=token, secret=SECRET)
    assert ei.value.detail == "token_invalid"
    assert ei.value.status_code == 403


def test_blank_secret_is_a_configuration_error():
    with pytest.raises(ValueError):
        create_access_token(secret="", user_id=1, username="u", role="user", expires_minutes=5)


def test_password_hash_roundtrip():
    digest = hash_password("Passw0rd")
    assert digest != "Passw0rd"
    assert verify_password("Passw0rd", digest)
    assert not verify_password("passw0rd", digest)
    assert not verify_password("", digest)
    assert not verify_password("Passw0rd", "not-a-hash")
