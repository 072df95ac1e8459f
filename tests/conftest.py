"""Pytest configuration and fixtures."""
import os

# Settings are read at import time; give tests a working default.
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017")
os.environ.setdefault("JWT_SECRET", "test-secret-key")

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402
from motor.motor_asyncio import AsyncIOMotorClient  # noqa: E402
from pymongo.errors import PyMongoError  # noqa: E402

from app.config import settings  # noqa: E402
from app.database import database, ensure_indexes  # noqa: E402
from app.main import app  # noqa: E402
from app.services.user_service import UserService  # noqa: E402
from app.utils.clock import FixedClock, get_clock  # noqa: E402

# Fixed "now" shared by integration tests.
TEST_NOW = datetime(2024, 3, 15, 14, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_clock():
    """Clock frozen at TEST_NOW."""
    return FixedClock(TEST_NOW)


@pytest_asyncio.fixture
async def test_db():
    """
    Disposable test database with indexes.

    Skips the test when no MongoDB server is reachable.
    """
    client = AsyncIOMotorClient(
        settings.mongodb_url, tz_aware=True, serverSelectionTimeoutMS=2000
    )
    try:
        await client.admin.command("ping")
    except PyMongoError:
        client.close()
        pytest.skip("MongoDB is not available")

    db_name = f"{settings.mongodb_db_name}_test"
    await client.drop_database(db_name)
    db = client[db_name]
    await ensure_indexes(db)

    yield db

    await client.drop_database(db_name)
    client.close()


@pytest_asyncio.fixture
async def app_client(test_db, fixed_clock):
    """
    Async HTTP client bound to the test database and fixed clock.

    This fixture:
    - Points the database dependency at the test database
    - Overrides the clock dependency with fixed_clock
    - Restores both after the test
    """
    original_db = database.db
    database.db = test_db
    app.dependency_overrides[get_clock] = lambda: fixed_clock

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()
    database.db = original_db


@pytest_asyncio.fixture
async def admin_headers(app_client, test_db):
    """Authorization headers of a freshly created administrator."""
    password = await UserService(test_db).ensure_default_admin("admin")
    response = await app_client.post(
        "/auth/login", json={"username": "admin", "password": password}
    )
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def create_user(app_client, admin_headers):
    """
    Factory creating and activating a regular user.

    Returns:
        async callable(username, password) -> auth headers
    """
    async def _create(username: str = "alice", password: str = "password123") -> dict:
        created = await app_client.post(
            "/admin/users",
            json={"username": username, "greeting": f"Hi {username}"},
            headers=admin_headers,
        )
        activation_token = created.json()["activation"]["token"]
        await app_client.post(
            "/auth/activate",
            json={"token": activation_token, "password": password},
        )
        login = await app_client.post(
            "/auth/login", json={"username": username, "password": password}
        )
        return {"Authorization": f"Bearer {login.json()['access_token']}"}

    return _create


@pytest_asyncio.fixture
async def user_headers(create_user):
    """Authorization headers of a regular activated user."""
    return await create_user()
