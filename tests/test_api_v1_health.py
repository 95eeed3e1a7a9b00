# Tests for the health router.

from unittest.mock import AsyncMock, patch

from therapychat.llm.ollama import LocalModelHealth, OllamaChatModel
from therapychat.security.rate_limiter import fingerprint_ip


class TestHealthSummary:
    """Tests for GET /api/v1/health."""

    def test_summary(self, client):
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["environment"] == "test"
        assert data["default_model"] == "default"
        assert data["local_model_available"] is True
        models = {m["id"]: m for m in data["models"]}
        assert set(models) == {"default", "analytical", "byok", "local"}
        assert models["analytical"]["supports_web_search"] is True
        assert models["byok"]["kind"] == "byok"
        assert models["byok"]["available"] is True

    def test_legacy_prefix(self, client):
        assert client.get("/api/health").status_code == 200

    def test_no_auth_required(self, client):
        assert client.get("/api/v1/health", headers={}).status_code == 200


class TestLocalModelHealth:
    """Tests for GET /api/v1/health/local-model."""

    def test_ok(self, client):
        health = LocalModelHealth("ok", "LOCAL_MODEL_OK", "fine", {"model": "llama3.2"})
        with patch.object(OllamaChatModel, "check_health", AsyncMock(return_value=health)):
            resp = client.get("/api/v1/health/local-model")
        assert resp.status_code == 200
        assert resp.json()["code"] == "LOCAL_MODEL_OK"

    def test_model_missing(self, client, settings):
        settings.ollama_model = "my-model"
        seen = {}

        async def fake_check(self, timeout=5.0):
            seen["model"] = self.model_id
            return LocalModelHealth(
                "model_missing",
                "LOCAL_MODEL_MISSING",
                "Model 'my-model' is not available on the local endpoint",
                {"model": self.model_id, "available": []},
            )

        with patch.object(OllamaChatModel, "check_health", fake_check):
            resp = client.get("/api/v1/health/local-model")
        assert resp.status_code == 503
        data = resp.json()
        assert data["status"] == "model_missing"
        assert data["details"]["model"] == "my-model"
        assert seen["model"] == "my-model"

    def test_disabled(self, client, settings):
        settings.local_model_enabled = False
        resp = client.get("/api/v1/health/local-model")
        assert resp.status_code == 503
        assert resp.json()["status"] == "disabled"

    def test_misconfigured(self, client, settings):
        settings.ollama_base_url = "not a url"
        resp = client.get("/api/v1/health/local-model")
        assert resp.status_code == 503
        assert resp.json()["code"] == "LOCAL_MODEL_MISCONFIGURED"


class TestRateLimitReport:
    """Tests for GET /api/v1/health/rate-limits."""

    def test_empty(self, client):
        resp = client.get("/api/v1/health/rate-limits")
        assert resp.status_code == 200
        assert resp.json() == {"clients": []}

    def test_blocked_client_listed_by_fingerprint(self, client, app):
        limiter = app.state.rate_limiter
        for _ in range(limiter._configs["default"].max_requests):
            limiter.check("203.0.113.7", "default")
        resp = client.get("/api/v1/health/rate-limits")
        clients = resp.json()["clients"]
        assert len(clients) == 1
        assert clients[0]["fingerprint"] == fingerprint_ip("203.0.113.7")
        assert clients[0]["bucket"] == "default"
        assert "203.0.113.7" not in resp.text
