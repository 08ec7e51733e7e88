"""Shared fixtures: in-memory MongoDB, signed test tokens and an API client."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import jwt
import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app, get_optional_storage, get_storage
from settings import Settings, get_settings
from storage import ScreenshotStorage

JWT_SECRET = "test-secret"
SIGNED_URL = "https://proj.supabase.co/storage/v1/object/sign/screenshots/user_1/1.png?token=fresh"


def make_token(sub: str = "user_1", secret: str = JWT_SECRET, expires_in: int = 3600) -> str:
    now = datetime.now(timezone.utc)
    claims = {"sub": sub, "iat": now, "exp": now + timedelta(seconds=expires_in)}
    return jwt.encode(claims, secret, algorithm="HS256")


def auth_headers(sub: str = "user_1") -> dict:
    return {"Authorization": f"Bearer {make_token(sub)}"}


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        auth_jwt_secret=JWT_SECRET,
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret="whsec_test",
        stripe_payment_link_pro="https://buy.stripe.com/test_pro",
        app_url="https://journal.example.com",
    )


@pytest.fixture
def mongo_db():
    db = mongomock.MongoClient().journal
    ensure_indexes(db)
    return db


@pytest.fixture
def storage_client():
    client = MagicMock()
    client.storage.from_.return_value.create_signed_url.return_value = {"signedURL": SIGNED_URL}
    return client


@pytest.fixture
def screenshot_storage(storage_client):
    return ScreenshotStorage(storage_client, "screenshots")


@pytest.fixture
def client(test_settings, mongo_db, screenshot_storage):
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_storage] = lambda: screenshot_storage
    app.dependency_overrides[get_optional_storage] = lambda: screenshot_storage
    yield TestClient(app)
    app.dependency_overrides.clear()
