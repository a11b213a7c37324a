"""Pytest configuration and shared fixtures."""
import os

# Cheap hashing and a non-production environment before settings load.
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from unittest.mock import AsyncMock, Mock, patch
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from app.core.config import settings
from app.infrastructure.mongo import get_db

PASSWORD = "Secure#Pass1"


@pytest.fixture
def upload_root(tmp_path, monkeypatch):
    """Point uploads at a per-test directory."""
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path / "uploads"))
    return tmp_path / "uploads"


@pytest.fixture
def mongo_db():
    """In-memory MongoDB database."""
    return AsyncMongoMockClient()["coursehub_test"]


@pytest.fixture
def test_client(mongo_db, upload_root):
    """FastAPI test client backed by the in-memory database."""
    from main import app

    async def override_get_db():
        return mongo_db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def signup(test_client):
    """Create an account through the API and return (token, user json)."""
    counter = {"n": 0}

    def _signup(role="teacher", **overrides):
        counter["n"] += 1
        username = overrides.pop("username", f"{role}{counter['n']}")
        body = {
            "name": f"{role.title()} {counter['n']}",
            "email": f"{username}@academy.org",
            "password": PASSWORD,
            "username": username,
            "phone": "0600000000",
            "role": role,
        }
        body.update(overrides)
        response = test_client.post("/api/auth/signup", json=body)
        assert response.status_code == 201, response.text
        data = response.json()
        return data["token"], data["user"]

    return _signup


@pytest.fixture
def teacher_token(signup):
    token, _ = signup("teacher")
    return token


@pytest.fixture
def authenticated_client(test_client, teacher_token):
    """Test client carrying a teacher's bearer token."""
    test_client.headers.update({"Authorization": f"Bearer {teacher_token}"})
    return test_client


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


def png_bytes(size=256):
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * (size - 8)


@pytest.fixture
def create_course(test_client):
    """Create a course through the multipart endpoint and return its json."""

    def _create(token, title="Intro to Python", price=49.0, duration=12, **form):
        data = {
            "title": title,
            "duration": str(duration),
            "price": str(price),
            "description": "Variables, loops and functions",
        }
        data.update(form)
        response = test_client.post(
            "/api/courses",
            data=data,
            files={"image": ("logo.png", png_bytes(), "image/png")},
            headers=auth_header(token),
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture(autouse=True)
def mock_redis():
    """Auto-mock Redis for all tests to avoid needing real Redis."""
    with patch('app.infrastructure.redis.get_redis_client', new_callable=AsyncMock) as mock:
        mock_client = Mock()
        mock_client.incr = AsyncMock(return_value=1)
        mock_client.expire = AsyncMock(return_value=True)
        mock_client.ttl = AsyncMock(return_value=60)
        mock_client.ping = AsyncMock(return_value=True)
        mock.return_value = mock_client
        yield mock_client
