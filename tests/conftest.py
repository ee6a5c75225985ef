from datetime import datetime, timedelta

import pytest

from anonwall import create_app
from anonwall.helpers import create_or_update_admin, hash_ip
from anonwall.models import Message, db

NOW = datetime(2026, 2, 15, 12, 0, 0)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def app(clock, monkeypatch):
    monkeypatch.setenv("ANONWALL_SWEEPER", "0")
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "APP_KEY": "test-app-key",
            "SQLALCHEMY_DATABASE_URI": "sqlite://",
            "CACHE_TYPE": "SimpleCache",
            "RATELIMIT_ENABLED": False,
            "FRONTEND_URL": "http://localhost:3000",
            "CLOCK": clock,
        }
    )
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_message(app, clock):
    def _make(**kwargs):
        created = kwargs.pop("created_at", clock())
        values = {
            "content": "hello wall",
            "ip_hash": hash_ip("10.9.9.9"),
            "category": None,
            "likes_count": 0,
            "is_deleted": False,
            "created_at": created,
            "expires_at": created + timedelta(hours=24),
        }
        values.update(kwargs)
        msg = Message(**values)
        db.session.add(msg)
        db.session.commit()
        return msg

    return _make


@pytest.fixture
def admin(app):
    return create_or_update_admin("mod@example.com", "Mod", "secret123")


@pytest.fixture
def admin_token(client, admin):
    resp = client.post(
        "/api/admin/login", json={"email": "mod@example.com", "password": "secret123"}
    )
    assert resp.status_code == 200
    return resp.get_json()["data"]["token"]


@pytest.fixture
def auth_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}
