from __future__ import annotations

from typing import Any, Dict, Optional

import pytest
from fastapi.testclient import TestClient

from bookstore_platform.api.server import create_app
from bookstore_platform.auth.crud import create_user
from bookstore_platform.config import Config
from bookstore_platform.db import connect, init_db
from bookstore_platform.models import Principal, Role


PASSWORD = "Passw0rd"
ADMIN_PASSWORD = "AdminPass1"


@pytest.fixture
def cfg(tmp_path) -> Config:
    return Config(
        DB_DSN=str(tmp_path / "bookstore-test.sqlite"),
        AUTH_JWT_SECRET="test-secret",
        AUTH_BOOTSTRAP_ADMIN_USERNAME="admin",
        AUTH_BOOTSTRAP_ADMIN_EMAIL="admin@example.com",
        AUTH_BOOTSTRAP_ADMIN_PASSWORD=ADMIN_PASSWORD,
        RATE_LIMIT_ENABLED=False,
        SMTP_HOST=None,
        MAIL_FROM=None,
        CORS_ALLOW_ORIGINS="",
    )


@pytest.fixture
def conn(cfg):
    init_db(cfg.DB_DSN)
    with connect(cfg.DB_DSN) as c:
        yield c


@pytest.fixture
def make_user(conn):
    """Create a user straight in the store and return (public_user, Principal)."""

    def _make(
        username: str,
        *,
        role: Role = Role.USER,
        store_name: Optional[str] = None,
        email: Optional[str] = None,
        password: str = PASSWORD,
    ):
        profile = {"storeName": store_name} if store_name else {}
        u = create_user(
            conn,
            username=username,
            email=email or f"{username}@example.com",
            password=password,
            role=role,
            profile=profile,
        )
        return u, Principal(id=u["id"], username=u["username"], email=u["email"], role=role)

    return _make


class Api:
    """Small wrapper around TestClient for the flows most tests need."""

    def __init__(self, client: TestClient):
        self.client = client

    @staticmethod
    def auth(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def register(
        self,
        username: str,
        *,
        role: str = "user",
        store_name: Optional[str] = None,
        password: str = PASSWORD,
    ):
        body: Dict[str, Any] = {
            "username": username,
            "email": f"{username}@example.com",
            "password": password,
            "role": role,
        }
        if store_name is not None:
            body["profile"] = {"storeName": store_name}
        return self.client.post("/api/auth/register", json=body)

    def login(self, username: str, password: str = PASSWORD):
        return self.client.post(
            "/api/auth/login",
            json={"email": f"{username}@example.com", "password": password},
        )

    def token_for(self, username: str, **kwargs: Any) -> str:
        r = self.register(username, **kwargs)
        assert r.status_code == 201, r.text
        return r.json()["token"]

    def admin_token(self) -> str:
        r = self.client.post("/api/auth/admin/login", json={"username": "admin", "password": ADMIN_PASSWORD})
        assert r.status_code == 200, r.text
        return r.json()["token"]

    def decide(self, admin_token: str, user_id: int, action: str):
        return self.client.put(
            f"/api/auth/booksellers/{user_id}/approve",
            json={"action": action},
            headers=self.auth(admin_token),
        )

    def approved_bookseller_token(self, username: str, store_name: str) -> str:
        r = self.register(username, role="bookseller", store_name=store_name)
        assert r.status_code == 201, r.text
        assert self.decide(self.admin_token(), r.json()["user"]["id"], "approve").status_code == 200
        r = self.login(username)
        assert r.status_code == 200, r.text
        return r.json()["token"]

    def create_book(self, token: str, **overrides: Any):
        body: Dict[str, Any] = {
            "title": "The Hobbit",
            "author": "J.R.R. Tolkien",
            "description": "There and back again.",
            "category": "fantasy",
            "coverImage": "hobbit.png",
            "oldPrice": 20.0,
            "newPrice": 15.5,
            "stock": 3,
        }
        body.update(overrides)
        return self.client.post("/api/books/create-book", json=body, headers=self.auth(token))


@pytest.fixture
def client(cfg):
    with TestClient(create_app(cfg)) as c:
        yield c


@pytest.fixture
def api(client) -> Api:
    return Api(client)
