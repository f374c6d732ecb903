"""Tests for the FastAPI backend endpoints."""

import json

import pytest
from fastapi.testclient import TestClient


# ---------------------------------------------------------------------------
# Swap the ServiceContainer's store and dispatcher for in-memory fakes
# ---------------------------------------------------------------------------

@pytest.fixture
def client(fake_store, dispatcher):
    """Create a TestClient backed by the fake store and dispatcher."""
    from execution.posh_knowledge import api

    api._container._store = fake_store
    api._container._dispatcher = dispatcher
    yield TestClient(api.app)
    api._container._store = None
    api._container._dispatcher = None


class TestHealth:

    def test_health_connected(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["version"] == "1.0.0"
        assert data["database"] == "connected"

    def test_health_disconnected(self, client, fake_store):
        fake_store.healthy = False
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()["database"] == "disconnected"


class TestTools:

    def test_list_tools(self, client):
        response = client.get("/api/v1/tools")
        assert response.status_code == 200
        names = [tool["name"] for tool in response.json()]
        assert len(names) == 7
        assert "semantic_search" in names
        assert all("inputSchema" in tool for tool in response.json())

    def test_call_tool_success(self, client):
        response = client.post(
            "/api/v1/tools/call",
            json={"name": "search_posh_act", "arguments": {"query": "x", "section_number": "14"}},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["isError"] is False
        assert data["content"][0]["type"] == "text"
        payload = json.loads(data["content"][0]["text"])
        assert payload["strategy"] == "exact"
        assert payload["sections"][0]["section_number"] == "14"

    def test_unknown_tool_is_not_http_error(self, client):
        response = client.post("/api/v1/tools/call", json={"name": "drop_tables", "arguments": {}})
        assert response.status_code == 200
        data = response.json()
        assert data["isError"] is True
        assert "drop_tables" in data["content"][0]["text"]

    def test_invalid_arguments_reported_in_envelope(self, client):
        response = client.post("/api/v1/tools/call", json={"name": "get_case_law", "arguments": {}})
        assert response.status_code == 200
        assert response.json()["isError"] is True

    def test_arguments_optional(self, client):
        response = client.post("/api/v1/tools/call", json={"name": "check_compliance"})
        assert response.status_code == 200
        assert response.json()["isError"] is True

    def test_malformed_envelope(self, client):
        response = client.post("/api/v1/tools/call", json={"arguments": {"query": "x"}})
        assert response.status_code == 422


class TestMetricsEndpoint:

    def test_metrics_after_call(self, client):
        client.post("/api/v1/tools/call", json={"name": "get_template", "arguments": {"template_type": "inquiry_report"}})
        response = client.get("/api/v1/metrics")
        assert response.status_code == 200
        data = response.json()
        assert data["calls"]["total"] == 1
        assert data["calls"]["by_tool"] == {"get_template": 1}
        assert data["uptime_seconds"] >= 0
