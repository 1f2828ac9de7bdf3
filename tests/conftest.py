from __future__ import annotations

import os

import pytest

# Tests run without eventlet and without a Redis server.
os.environ.setdefault("SOCKETIO_ASYNC_MODE", "threading")
os.environ["REDIS_URL"] = ""

from backend.planpoker.auth import issue_token  # noqa: E402
from backend.planpoker.poker import engine  # noqa: E402
from backend.planpoker.poker.models import Identity, Role  # noqa: E402
from backend.planpoker.server import create_app  # noqa: E402

TEST_SECRET = "test-secret"


@pytest.fixture
def app_and_socketio():
    return create_app(
        {
            "TESTING": True,
            "SECRET_KEY": TEST_SECRET,
            "REDIS_URL": "",
            "ALLOW_DEV_LOGIN": True,
            "SOCKETIO_ASYNC_MODE": "threading",
            "MAX_ROOMS_PER_USER": 3,
            "LOG_LEVEL": "WARNING",
        }
    )


@pytest.fixture
def app(app_and_socketio):
    return app_and_socketio[0]


@pytest.fixture
def socketio(app_and_socketio):
    return app_and_socketio[1]


@pytest.fixture
def services(app):
    return app.extensions["planpoker"]


@pytest.fixture
def make_token():
    def _make(user_id: str, name: str | None = None, avatar_url: str | None = None) -> str:
        return issue_token(Identity(user_id=user_id, name=name or user_id.title(), avatar_url=avatar_url), TEST_SECRET)

    return _make


@pytest.fixture
def auth_headers(make_token):
    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {make_token(user_id)}"}

    return _headers


@pytest.fixture
def connect(app, socketio, make_token):
    """Open an authenticated Socket.IO test client for ``user_id``."""
    clients = []

    def _connect(user_id: str, name: str | None = None):
        client = socketio.test_client(app, auth={"token": make_token(user_id, name)})
        clients.append(client)
        return client

    yield _connect

    for client in clients:
        if client.is_connected():
            client.disconnect()


@pytest.fixture
def new_room(services):
    """Persist a fresh room administered by ``admin_id``."""

    def _create(admin_id: str = "admin", name: str = "Sprint 1"):
        return services.rooms.create_room(Identity(user_id=admin_id, name=admin_id.title()), name)

    return _create


def build_room(players=(), spectators=()):
    """In-memory room with the given connected players and spectators."""
    room = engine.new_room(Identity("admin", "Admin"), "Sprint 1")
    room = engine.join(room, Identity("admin", "Admin"))
    for uid in players:
        room = engine.join(room, Identity(uid, uid.upper()), Role.PLAYER)
    for uid in spectators:
        room = engine.join(room, Identity(uid, uid.upper()), Role.SPECTATOR)
    return room


def event_names(received: list) -> list[str]:
    return [msg["name"] for msg in received]
