"""
Tests for the HTTP surface (routes_prospects.py).

Provider access is replaced through FastAPI dependency overrides so no test
leaves the process.
"""
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient
from tenacity import wait_none

from prospect_intel.api import routes_prospects
from prospect_intel.api.routes_prospects import get_provider_client
from prospect_intel.main import app
from prospect_intel.services.circuit_breaker import CircuitBreakerRegistry
from prospect_intel.services.errors import ErrorCode, ProviderError
from prospect_intel.services.provider_client import ResilientProviderClient
from tests.fixtures.provider_payloads import WEBSET_CREATED, WEBSET_RUNNING, mock_http_client

PREFIX = routes_prospects.settings.API_PREFIX


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.breakers.reset_all()
    app.state.limiters.reset_all()


def _override_client(provider_client):
    app.dependency_overrides[get_provider_client] = lambda: provider_client


class TestCapacityEndpoint:
    """POST /capacity"""

    def test_basic_example(self, client):
        """The single-home example returns 50,000."""
        resp = client.post(
            f"{PREFIX}/capacity",
            json={"real_estate_value": 1_000_000, "property_count": 1, "calculation_type": "basic"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["basic"] == 50_000
        assert body["recommended"] == 50_000

    def test_negative_value_rejected(self, client):
        """Negative inputs are a validation error."""
        resp = client.post(f"{PREFIX}/capacity", json={"real_estate_value": -1, "property_count": 1})
        assert resp.status_code == 422

    def test_insufficient_data(self, client):
        """No real estate anchor returns an insufficient result, not an error."""
        resp = client.post(f"{PREFIX}/capacity", json={"age": 50})
        assert resp.status_code == 200
        assert resp.json()["insufficient_data"] is True


class TestReportsEndpoint:
    """POST /reports"""

    def test_all_providers_unavailable(self, client):
        """With every provider failing the report is insufficient but still returned."""
        provider_client = MagicMock()
        provider_client.call = AsyncMock(
            side_effect=ProviderError("not configured", ErrorCode.NOT_CONFIGURED)
        )
        _override_client(provider_client)

        resp = client.post(f"{PREFIX}/reports", json={"name": "Jane Smith", "state": "FL"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["summary"]["insufficient_data"] is True
        assert body["collection"]["tools_failed"] == 4
        assert body["markdown"].startswith("# Donor Profile: Jane Smith")

    def test_name_required(self, client):
        """A blank name is rejected."""
        resp = client.post(f"{PREFIX}/reports", json={"name": "   "})
        assert resp.status_code == 422

    def test_state_must_be_two_letters(self, client):
        """State codes are validated."""
        resp = client.post(f"{PREFIX}/reports", json={"name": "Jane Smith", "state": "Florida"})
        assert resp.status_code == 422


class TestDiscoveryEndpoints:
    """Discovery submit, status and templates."""

    def _exa_client(self, responses):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json=WEBSET_CREATED)
            return httpx.Response(200, json=responses.get(request.url.path, WEBSET_RUNNING))

        return ResilientProviderClient(
            CircuitBreakerRegistry(),
            credentials={"exa_websets": "k"},
            http_client=mock_http_client(handler),
            retry_wait=wait_none(),
            max_attempts=1,
        )

    def test_templates_listed(self, client):
        """Templates are listed with their conditions."""
        resp = client.get(f"{PREFIX}/discovery/templates")
        assert resp.status_code == 200
        keys = {t["key"] for t in resp.json()}
        assert "tech_philanthropists" in keys

    def test_submit_from_template(self, client):
        """A template submission returns the queued job."""
        _override_client(self._exa_client({}))
        resp = client.post(
            f"{PREFIX}/discovery", json={"template": "real_estate_investors", "location": "Miami, FL"}
        )
        assert resp.status_code == 202
        body = resp.json()
        assert body["job_id"] == "ws_123"
        assert body["objective"].endswith("in Miami, FL")

    def test_unknown_template(self, client):
        """Unknown templates are a validation error."""
        _override_client(self._exa_client({}))
        resp = client.post(f"{PREFIX}/discovery", json={"template": "nope"})
        assert resp.status_code == 422

    def test_objective_requires_conditions(self, client):
        """A custom objective needs match conditions."""
        resp = client.post(f"{PREFIX}/discovery", json={"objective": "Find donors"})
        assert resp.status_code == 422

    def test_submit_without_credentials(self, client):
        """A missing discovery key maps to 503 with the error code."""
        _override_client(
            ResilientProviderClient(CircuitBreakerRegistry(), credentials={"exa_websets": None})
        )
        resp = client.post(
            f"{PREFIX}/discovery",
            json={"objective": "Find donors", "match_conditions": [{"name": "a", "description": "b"}]},
        )
        assert resp.status_code == 503
        assert resp.json()["detail"]["code"] == "NOT_CONFIGURED"

    def test_status_read(self, client):
        """A running job reports status and no candidates yet."""
        _override_client(self._exa_client({}))
        resp = client.get(f"{PREFIX}/discovery/ws_123")
        assert resp.status_code == 200
        body = resp.json()
        assert body["job"]["status"] == "running"
        assert body["job"]["generated_count"] == 7
        assert body["candidates"] == []


class TestHealthAndAuth:
    """Breaker health and API key checks."""

    def test_health_reports_open_circuits(self, client):
        """An open breaker degrades provider health."""
        app.state.breakers.get_or_create("fec").force_open()
        resp = client.get(f"{PREFIX}/health/providers")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "degraded"
        assert body["open_circuits"] == ["fec"]
        assert body["circuits"]["fec"]["state"] == "open"
        assert "exa_websets" in body["connectors"]

    def test_health_ok(self, client):
        """No open breakers is ok."""
        resp = client.get(f"{PREFIX}/health/providers")
        assert resp.json()["status"] == "ok"
        assert "rate_limits" in resp.json()

    def test_api_key_enforced_when_configured(self, client, monkeypatch):
        """With a key configured, requests need the matching header."""
        monkeypatch.setattr(routes_prospects.settings, "API_AUTH_KEY", "secret")
        payload = {"real_estate_value": 1_000_000, "property_count": 1}

        assert client.post(f"{PREFIX}/capacity", json=payload).status_code == 401
        assert client.post(f"{PREFIX}/capacity", json=payload, headers={"X-API-Key": "wrong"}).status_code == 401
        ok = client.post(f"{PREFIX}/capacity", json=payload, headers={"X-API-Key": "secret"})
        assert ok.status_code == 200
