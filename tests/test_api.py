"""Tests for the FastAPI endpoints."""

from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from vetcare_mcp.server import app, build_dispatcher


def _vetcare_api(request: httpx.Request) -> httpx.Response:
    """Stand-in for the VetCare API behind an httpx mock transport."""
    if request.url.path == "/api/health":
        return httpx.Response(200, json={"status": "ok"})
    if request.url.path == "/api/clientes":
        return httpx.Response(200, json=[{"id": 7, "nome": "Ana Souza"}])
    return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def dispatcher():
    """Build a dispatcher and attach it to app state (mirrors the lifespan)."""
    dispatcher = build_dispatcher(transport=httpx.MockTransport(_vetcare_api))
    app.state.dispatcher = dispatcher
    yield dispatcher
    # Clean up
    app.state.dispatcher = None


@pytest.fixture
def client(dispatcher):
    """FastAPI test client with the dispatcher wired up."""
    return TestClient(app)


def _rpc(method, params=None, msg_id=1):
    message = {"jsonrpc": "2.0", "id": msg_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


class TestHealthEndpoint:
    def test_health_reports_upstream_and_registry(self, client, dispatcher):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "vetcare-mcp"
        assert data["api"]["status"] == "healthy"
        assert data["tools"]["match"] is True
        assert data["tools"]["defined"] == len(dispatcher.registry)
        assert data["lifecycle"] == "uninitialized"

    def test_unreachable_upstream_is_unhealthy(self, client, dispatcher):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        app.state.dispatcher = build_dispatcher(transport=httpx.MockTransport(refuse))
        data = client.get("/health").json()
        assert data["status"] == "unhealthy"
        assert data["api"]["status"] == "error"


class TestMcpEndpoint:
    def test_initialize(self, client):
        response = client.post("/", json=_rpc("initialize", {"clientInfo": {"name": "test"}}))
        assert response.status_code == 200
        data = response.json()
        assert data["result"]["serverInfo"]["name"] == "vetcare-mcp"

    def test_tools_call_reaches_upstream(self, client):
        response = client.post(
            "/", json=_rpc("tools/call", {"name": "search_clients", "arguments": {"search_term": "Ana"}}),
        )
        data = response.json()
        assert data["result"]["isError"] is False
        assert "Ana Souza" in data["result"]["content"][0]["text"]

    def test_protocol_errors_use_http_200(self, client):
        response = client.post("/", json=_rpc("tools/call", {"name": "nope"}))
        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32601

    def test_parse_error(self, client):
        response = client.post(
            "/", content=b"{not json", headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["id"] is None
        assert data["error"]["code"] == -32700

    def test_notification_is_accepted_without_body(self, client):
        response = client.post("/", json={"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert response.status_code == 202
        assert response.content == b""

    def test_rate_limit_is_per_client_id(self, client, dispatcher):
        dispatcher.rate_limiter.max_requests = 1
        headers = {"X-Client-ID": "agent-1"}
        assert "result" in client.post("/", json=_rpc("ping"), headers=headers).json()

        data = client.post("/", json=_rpc("ping"), headers=headers).json()
        assert data["error"]["code"] == -32605
        assert data["error"]["data"]["retry_after"] > 0

        other = client.post("/", json=_rpc("ping"), headers={"X-Client-ID": "agent-2"}).json()
        assert "result" in other

    def test_response_includes_request_id_header(self, client):
        response = client.post("/", json=_rpc("ping"))
        assert "X-Request-ID" in response.headers

    def test_client_supplied_request_id_is_echoed(self, client):
        response = client.post("/", json=_rpc("ping"), headers={"X-Request-ID": "my-trace-id-123"})
        assert response.headers["X-Request-ID"] == "my-trace-id-123"


class TestMetricsEndpoint:
    def test_metrics_include_component_stats(self, client):
        client.post(
            "/", json=_rpc("tools/call", {"name": "search_clients", "arguments": {"search_term": "Ana"}}),
        )
        data = client.get("/metrics").json()
        assert data["requests"]["total"] == 1
        assert data["top_tools"][0]["name"] == "search_clients"
        assert "clients" in data["cache"]
        assert data["upstream"]["requests"] == 1
        assert "tracked_identifiers" in data["rate_limiter"]


class TestDiscovery:
    def test_well_known(self, client):
        data = client.get("/.well-known/mcp").json()
        assert data["protocolVersion"] == "2024-11-05"
        assert data["serverInfo"]["name"] == "vetcare-mcp"
        assert data["capabilities"] == {"tools": {"listChanged": False}}

    def test_root_returns_service_info(self, client, dispatcher):
        data = client.get("/").json()
        assert data["name"] == "vetcare-mcp"
        assert data["endpoints"]["mcp"] == "POST /"
        assert data["tools_available"] == len(dispatcher.registry)


class TestServerNotReady:
    def test_returns_503_when_dispatcher_not_initialised(self):
        """Before the lifespan has built the dispatcher, calls get 503."""
        app.state.dispatcher = None
        response = TestClient(app).post("/", json=_rpc("ping"))
        assert response.status_code == 503
        assert "starting up" in response.json()["detail"].lower()
