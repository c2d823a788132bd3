"""API test fixtures: in-memory app, async client and admin auth."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from loginwatch.auth.credentials import ensure_user
from loginwatch.config import LoginWatchConfig
from loginwatch.database import create_tables
from loginwatch.main import create_app

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "correct-horse"


@pytest.fixture
def test_config():
    return LoginWatchConfig(
        _env_file=None,
        debug=True,
        log_dir="",
        database_url="sqlite+aiosqlite:///:memory:",
        secret_key="test-secret-key-for-api-tests-0123456789",
        counter_store_backend="memory",
        rate_limit_max_attempts=3,
        rate_limit_window_seconds=30,
        rate_limit_lockout_seconds=300,
    )


@pytest_asyncio.fixture
async def test_app(test_config):
    """App with its own in-memory database and counter store."""
    app = create_app(test_config)
    await create_tables(app.state.engine)
    await ensure_user(app.state.session_factory, ADMIN_USERNAME, ADMIN_PASSWORD)
    yield app
    await app.state.counter_store.close()
    await app.state.engine.dispose()


@pytest_asyncio.fixture
async def client(test_app):
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def admin_headers(client):
    resp = await client.post(
        "/api/v1/auth/login",
        json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD},
    )
    assert resp.status_code == 200, f"Login failed: {resp.text}"
    token = resp.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}
