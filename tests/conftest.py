import os

# Cheap hashes and a loose rate limit for the test run; read by settings at import time.
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_MAX_REQUESTS", "100000")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient

from database import Store
from main import create_app
from settings import API_PREFIX


@pytest.fixture
def store():
    return Store().seed()


@pytest.fixture
def client(store):
    return TestClient(create_app(store))


def login(client, email, password):
    res = client.post(f"{API_PREFIX}/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['token']}"}


@pytest.fixture
def admin_headers(client):
    return login(client, "admin@ecommerce.com", "admin123")


@pytest.fixture
def user_headers(client):
    return login(client, "user@example.com", "password123")


@pytest.fixture
def login_as(client):
    return lambda email, password: login(client, email, password)
