"""
Pytest configuration and shared fixtures.

Environment variables are set here, before any chatroom import, so the
cached settings pick up the test database.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_chatroom.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from chatroom.config import get_settings
get_settings.cache_clear()

from chatroom import models  # noqa: E402,F401  registers tables on Base.metadata
from chatroom.main import app  # noqa: E402
from chatroom.storage import Base, engine  # noqa: E402


ALICE = {
    "email": "alice@example.com",
    "firstName": "Alice",
    "lastName": "Smith",
    "password": "secret1",
    "vPassword": "secret1",
}

BOB = {
    "email": "bob@example.com",
    "firstName": "Bob",
    "lastName": "Jones",
    "password": "secret2",
    "vPassword": "secret2",
}


def register(client, account: dict) -> dict:
    """Register an account and return the user payload."""
    response = client.post("/registration", json=account)
    assert response.status_code == 200, response.text
    return response.json()["data"]


def login(client, account: dict) -> dict:
    """Log in; the session cookie stays on the client."""
    response = client.post("/login", json={"email": account["email"], "password": account["password"]})
    assert response.status_code == 200, response.text
    return response.json()["data"]


def send_message(client, content: str) -> dict:
    response = client.post("/api/message", json={"messageContent": content})
    assert response.status_code == 200, response.text
    return response.json()["data"]


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    # Cleanup - drop all tables after test
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def alice(client):
    """The default client, registered and logged in as Alice."""
    register(client, ALICE)
    client.user = login(client, ALICE)
    return client


@pytest.fixture
def bob(client):
    """A second client sharing the database, logged in as Bob."""
    other = TestClient(app)
    register(other, BOB)
    other.user = login(other, BOB)
    yield other
    other.close()
