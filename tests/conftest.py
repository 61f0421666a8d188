"""Shared fixtures: a seeded in-memory accessor and a configured gateway app."""

import pytest
from fastapi.testclient import TestClient

from gateway.accessor import MemoryAccessor
from gateway.context import GatewayContext
from gateway.main import create_app


PASSWORD = "secret123"

# Lowest bcrypt cost factor keeps the suite fast
BCRYPT_ROUNDS = 4

SEED = {
    "projects": {
        "novel": {
            "name": "My Novel",
            "chapters": {
                "ch1": {"title": "Chapter 1", "content": "It was a dark and stormy night."},
                "ch2": {"title": "Chapter 2", "content": ""},
            },
        },
    },
    "settings": {"theme": "dark", "fontSize": 16},
    "recent": ["novel"],
    "tutorials": [{"name": "getting-started.md", "content": "# Getting started"}],
}


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def accessor():
    return MemoryAccessor(SEED)


@pytest.fixture
def context(accessor):
    ctx = GatewayContext.create(accessor=accessor, bcrypt_rounds=BCRYPT_ROUNDS)
    ctx.credentials.set_password(PASSWORD)
    return ctx


@pytest.fixture
def app(context):
    return create_app(context)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def token(client):
    response = client.post("/api/login", json={"password": PASSWORD})
    assert response.status_code == 200
    return response.json()["token"]
