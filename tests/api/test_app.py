"""Tests for the application factory and its service endpoints."""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from loginwatch.engine.counter_store import MemoryCounterStore
from loginwatch.main import create_app
from loginwatch.models.user import User


class TestServiceEndpoints:
    @pytest.mark.asyncio
    async def test_root(self, client):
        resp = await client.get("/")
        assert resp.status_code == 200
        assert resp.json()["status"] == "operational"

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["counter_store"] == {"backend": "memory", "reachable": True}

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        resp = await client.get("/", headers={"X-Request-ID": "abc-123"})
        assert resp.headers["X-Request-ID"] == "abc-123"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, client):
        resp = await client.get("/")
        assert resp.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_not_found_uses_error_envelope(self, client):
        resp = await client.get("/api/v1/nope")
        body = resp.json()
        assert resp.status_code == 404
        assert body["error"] is True
        assert body["status_code"] == 404
        assert "request_id" in body


class TestCreateApp:
    def test_apps_do_not_share_state(self, test_config):
        first, second = create_app(test_config), create_app(test_config)
        assert isinstance(first.state.counter_store, MemoryCounterStore)
        assert first.state.counter_store is not second.state.counter_store
        assert first.state.auth_gate is not second.state.auth_gate

    def test_policy_from_config(self, test_config):
        app = create_app(test_config)
        policy = app.state.auth_gate.limiter.policy
        assert policy.max_attempts == 3
        assert policy.lockout_seconds == 300


class TestLifespan:
    @pytest.mark.asyncio
    async def test_startup_creates_tables_and_bootstrap_admin(self, test_config):
        test_config.bootstrap_admin_username = "root"
        test_config.bootstrap_admin_password = "toor-toor"
        app = create_app(test_config)

        async with app.router.lifespan_context(app):
            async with app.state.session_factory() as session:
                user = (await session.execute(select(User).where(User.username == "root"))).scalar_one()
            assert user.password_hash != "toor-toor"

            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as ac:
                resp = await ac.post(
                    "/api/v1/auth/login", json={"username": "root", "password": "toor-toor"}
                )
            assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_default_secret_refused_outside_debug(self, test_config):
        test_config.debug = False
        test_config.secret_key = "CHANGE_ME_IN_PRODUCTION"
        app = create_app(test_config)

        with pytest.raises(RuntimeError):
            async with app.router.lifespan_context(app):
                pass
        await app.state.engine.dispose()
