"""Tests for the ``therapychat serve`` application factory."""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from therapychat.api.serve import create_api_app, run_api_server
from therapychat.llm.ollama import LocalModelHealth, OllamaChatModel

# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


@pytest.fixture
def api_app(settings):
    """App built from settings only (real registry, in-memory store)."""
    return create_api_app(settings)


class TestAppStructure:
    def test_state_components(self, api_app):
        state = api_app.state
        assert state.settings.environment == "test"
        assert state.registry.default_model_id == "default"
        assert state.rate_limiter is not None
        assert len(state.observer_tasks) == 0

    def test_routes_mounted_twice(self, api_app):
        client = TestClient(api_app)
        for prefix in ("/api/v1", "/api"):
            assert client.get(f"{prefix}/health").status_code == 200
            for path in ("/chat", "/sessions"):
                resp = client.post(f"{prefix}{path}", content=b"{}")
                assert resp.status_code not in (404, 405), path
        assert client.get("/api/v2/health").status_code == 404

    def test_openapi_lists_only_v1(self, api_app):
        client = TestClient(api_app)
        schema = client.get("/api/v1/openapi.json").json()
        assert "/api/v1/chat" in schema["paths"]
        assert "/api/chat" not in schema["paths"]


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


class TestLifespan:
    def test_components_started_and_stopped(self, api_app):
        with TestClient(api_app):
            lifecycle = api_app.state.lifecycle
            assert lifecycle.names == ["model_registry", "rate_limiter", "persistence_tasks"]
            assert api_app.state.rate_limiter.running
        assert not api_app.state.rate_limiter.running

    def test_injected_registry_not_closed(self, app, models):
        with TestClient(app):
            assert "model_registry" not in app.state.lifecycle.names
        assert not any(m.closed for m in models.values())

    def test_local_probe_on_startup(self, settings):
        settings.local_model_probe_on_startup = True
        app = create_api_app(settings)
        with patch.object(app.state.registry, "probe_local") as mock_probe:
            with TestClient(app):
                assert "local_model_probe" in app.state.lifecycle.names
        mock_probe.assert_called_once()

    def test_startup_health_check_default_depends_on_environment(self, settings):
        assert settings.probe_local_on_startup is False
        settings.environment = "development"
        assert settings.probe_local_on_startup is True
        settings.local_model_probe_on_startup = False
        assert settings.probe_local_on_startup is False

    def test_unreachable_local_model_dropped_at_startup(self, settings):
        settings.environment = "development"
        app = create_api_app(settings)
        down = LocalModelHealth(
            "network_error", "LOCAL_MODEL_UNREACHABLE", "Cannot connect", {"model": "llama3.2"}
        )
        with patch.object(OllamaChatModel, "check_health", AsyncMock(return_value=down)):
            with TestClient(app):
                assert "local_model_probe" in app.state.lifecycle.names
                assert app.state.registry.is_available("local") is False


# ---------------------------------------------------------------------------
# Middleware and error handling
# ---------------------------------------------------------------------------


class TestMiddleware:
    def test_request_id_generated(self, client):
        resp = client.get("/api/v1/health")
        assert len(resp.headers["X-Request-Id"]) == 32

    def test_request_id_propagated(self, client):
        resp = client.get("/api/v1/health", headers={"X-Request-Id": "abc"})
        assert resp.headers["X-Request-Id"] == "abc"

    def test_error_envelope_carries_request_id(self, client):
        resp = client.post("/api/v1/sessions", json={}, headers={"X-Request-Id": "abc"})
        body = resp.json()
        assert body["meta"]["requestId"] == "abc"
        assert body["meta"]["timestamp"]

    def test_cors_preflight(self, client):
        resp = client.options(
            "/api/chat",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type,x-clerk-user-id",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost:3000"

    def test_cors_rejects_unknown_origin(self, client):
        resp = client.options(
            "/api/chat",
            headers={"Origin": "https://evil.example", "Access-Control-Request-Method": "POST"},
        )
        assert "access-control-allow-origin" not in resp.headers

    def test_unhandled_exception_envelope(self, app):
        async def boom():
            raise RuntimeError("internal detail")

        app.add_api_route("/api/v1/boom", boom)
        client = TestClient(app, raise_server_exceptions=False)
        resp = client.get("/api/v1/boom")
        assert resp.status_code == 500
        body = resp.json()
        assert body["error"]["code"] == "INTERNAL_SERVER_ERROR"
        assert "internal detail" not in resp.text


# ---------------------------------------------------------------------------
# Server runner
# ---------------------------------------------------------------------------


class TestRunApiServer:
    def test_runs_uvicorn(self, settings):
        with (
            patch("therapychat.api.serve.Settings.load", return_value=settings),
            patch("uvicorn.run") as mock_run,
        ):
            run_api_server(host="0.0.0.0", port=9999)
        mock_run.assert_called_once()
        assert mock_run.call_args.kwargs["port"] == 9999
        assert mock_run.call_args.kwargs["host"] == "0.0.0.0"

    def test_dev_mode_uses_factory(self):
        with patch("uvicorn.run") as mock_run:
            run_api_server(dev=True)
        args, kwargs = mock_run.call_args
        assert args[0] == "therapychat.api.serve:create_api_app"
        assert kwargs["factory"] is True
        assert kwargs["reload"] is True
