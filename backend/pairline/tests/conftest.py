"""
Pytest fixtures shared across all test modules.
Uses an in-memory SQLite database with StaticPool so all connections
share a single in-memory DB, so no real Postgres or Redis required for tests.
"""

import os

# Set env vars BEFORE any pairline module is imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-min-32-chars-long!!"
os.environ["REDIS_URL"] = ""
os.environ["SESSION_REAPER_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Import pairline modules AFTER env vars are set
from pairline.database import Base, get_db  # noqa: E402
from pairline.main import app  # noqa: E402
from pairline.models import (  # noqa: E402,F401
    banned_ip,
    chat_message,
    chat_room,
    online_session,
    queue_entry,
    report,
)
from pairline.websocket.manager import manager  # noqa: E402

# Single shared in-memory SQLite engine; StaticPool ensures all
# connections share the same DB instance.
engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_manager():
    """The connection manager is a process-wide singleton."""
    yield
    manager._channels.clear()
    manager._watchers.clear()
    manager._rooms.clear()


@pytest.fixture()
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def new_session(client: TestClient, ip: str | None = None) -> str:
    headers = {"x-forwarded-for": ip} if ip else {}
    resp = client.post("/api/session", headers=headers)
    assert resp.status_code == 200, f"Session creation failed: {resp.json()}"
    return resp.json()["sessionId"]


def request_match(client: TestClient, session_id: str, chat_type: str = "text") -> dict:
    resp = client.post("/api/matchmaking", json={"sessionId": session_id, "chatType": chat_type})
    assert resp.status_code == 200, resp.json()
    return resp.json()


def matched_pair(client: TestClient, chat_type: str = "text") -> tuple[str, str, str]:
    """Two sessions matched with each other.  Returns (waiter, claimer, room_id)."""
    waiter = new_session(client)
    claimer = new_session(client)
    assert request_match(client, waiter, chat_type)["matched"] is False
    result = request_match(client, claimer, chat_type)
    assert result["matched"] is True
    return waiter, claimer, result["roomId"]
