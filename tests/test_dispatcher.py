"""Tests for the JSON-RPC dispatcher: envelope checks, rate limiting,
method routing, error-code mapping and metrics recording."""

import json

import httpx
import pytest

from vetcare_mcp.mcp.dispatcher import LifecycleState, McpDispatcher
from vetcare_mcp.mcp.protocol import PROTOCOL_VERSION
from vetcare_mcp.services.metrics import MetricsCollector
from vetcare_mcp.services.rate_limiter import SlidingWindowRateLimiter
from vetcare_mcp.tools import registry


@pytest.fixture
def dispatcher(ctx, clock):
    limiter = SlidingWindowRateLimiter(100, 60, enabled=True, clock=clock, sweep_probability=0)
    metrics = MetricsCollector(enabled=True, cloudwatch_enabled=False)
    metrics.register_tools(registry.names())
    return McpDispatcher(registry, ctx, limiter, metrics)


def _call(name, arguments=None, msg_id=1):
    return {
        "jsonrpc": "2.0",
        "id": msg_id,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments or {}},
    }


def _payload(reply):
    """Decode the JSON text content of a tools/call result."""
    return json.loads(reply["result"]["content"][0]["text"])


# ── Lifecycle & listing ──────────────────────────────────────────────


class TestLifecycle:
    async def test_initialize(self, dispatcher):
        reply = await dispatcher.handle(
            {"jsonrpc": "2.0", "id": 1, "method": "initialize",
             "params": {"clientInfo": {"name": "agent"}}},
            "agent-1",
        )

        assert reply["id"] == 1
        assert reply["result"]["protocolVersion"] == PROTOCOL_VERSION
        assert reply["result"]["serverInfo"]["name"] == "vetcare-mcp"
        assert dispatcher.state is LifecycleState.INITIALIZED

    async def test_initialized_notification_returns_nothing(self, dispatcher):
        await dispatcher.handle({"jsonrpc": "2.0", "id": 1, "method": "initialize"}, "a")

        reply = await dispatcher.handle({"jsonrpc": "2.0", "method": "notifications/initialized"}, "a")

        assert reply is None
        assert dispatcher.state is LifecycleState.SERVING

    async def test_calls_are_served_without_handshake(self, dispatcher):
        reply = await dispatcher.handle({"jsonrpc": "2.0", "id": 3, "method": "tools/list"}, "a")
        assert reply["result"]["tools"]
        assert dispatcher.state is LifecycleState.UNINITIALIZED

    async def test_ping(self, dispatcher):
        reply = await dispatcher.handle({"jsonrpc": "2.0", "id": "p", "method": "ping"}, "a")
        assert reply == {"jsonrpc": "2.0", "id": "p", "result": {}}


class TestToolsList:
    async def test_listing_is_idempotent(self, dispatcher):
        first = await dispatcher.handle({"jsonrpc": "2.0", "id": 1, "method": "tools/list"}, "a")
        second = await dispatcher.handle({"jsonrpc": "2.0", "id": 2, "method": "tools/list"}, "a")

        assert first["result"] == second["result"]
        names = [tool["name"] for tool in first["result"]["tools"]]
        assert names == registry.names()
        assert len(names) == len(set(names))

    async def test_each_tool_has_an_input_schema(self, dispatcher):
        reply = await dispatcher.handle({"jsonrpc": "2.0", "id": 1, "method": "tools/list"}, "a")
        search = next(t for t in reply["result"]["tools"] if t["name"] == "search_clients")
        assert search["inputSchema"]["required"] == ["search_term"]
        assert search["inputSchema"]["additionalProperties"] is False


# ── Envelope errors ──────────────────────────────────────────────────


class TestEnvelope:
    @pytest.mark.parametrize(
        "message",
        [
            [],
            {"id": 1, "method": "ping"},
            {"jsonrpc": "1.0", "id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "id": 1},
            {"jsonrpc": "2.0", "id": 1, "method": 42},
        ],
    )
    async def test_malformed_envelope(self, dispatcher, message):
        reply = await dispatcher.handle(message, "a")

        assert reply["error"]["code"] == -32600
        assert reply["error"]["data"]["success"] is False

    async def test_unknown_method(self, dispatcher):
        reply = await dispatcher.handle({"jsonrpc": "2.0", "id": 1, "method": "resources/list"}, "a")

        assert reply["error"]["code"] == -32601
        assert reply["error"]["message"] == "Method not found: resources/list"

    async def test_missing_tool_name(self, dispatcher):
        reply = await dispatcher.handle(
            {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {}}, "a",
        )
        assert reply["error"]["code"] == -32602

    async def test_arguments_must_be_an_object(self, dispatcher):
        reply = await dispatcher.handle(
            {"jsonrpc": "2.0", "id": 1, "method": "tools/call",
             "params": {"name": "get_pet", "arguments": [1]}},
            "a",
        )
        assert reply["error"]["code"] == -32602

    async def test_failed_notification_returns_nothing(self, dispatcher):
        assert await dispatcher.handle({"jsonrpc": "2.0", "method": "nope"}, "a") is None


# ── Rate limiting ────────────────────────────────────────────────────


class TestRateLimiting:
    async def test_fourth_request_is_rejected_with_retry_after(self, ctx, clock):
        limiter = SlidingWindowRateLimiter(3, 60, enabled=True, clock=clock, sweep_probability=0)
        dispatcher = McpDispatcher(registry, ctx, limiter, MetricsCollector(cloudwatch_enabled=False))
        ping = {"jsonrpc": "2.0", "id": 1, "method": "ping"}

        for _ in range(3):
            assert "result" in await dispatcher.handle(ping, "agent-1")
        reply = await dispatcher.handle(ping, "agent-1")

        assert reply["error"]["code"] == -32605
        assert reply["error"]["data"]["retry_after"] > 0
        assert "result" in await dispatcher.handle(ping, "agent-2")

    async def test_malformed_requests_do_not_consume_budget(self, ctx, clock):
        limiter = SlidingWindowRateLimiter(1, 60, enabled=True, clock=clock, sweep_probability=0)
        dispatcher = McpDispatcher(registry, ctx, limiter, MetricsCollector(cloudwatch_enabled=False))

        await dispatcher.handle({"id": 1}, "agent-1")
        reply = await dispatcher.handle({"jsonrpc": "2.0", "id": 2, "method": "ping"}, "agent-1")

        assert "result" in reply


# ── tools/call ───────────────────────────────────────────────────────


class TestToolsCall:
    async def test_success_wraps_result_as_text_content(self, dispatcher, upstream, mock_response):
        upstream.routes[("GET", "/clientes")] = mock_response([{"id": 7, "nome": "Ana"}])

        reply = await dispatcher.handle(_call("search_clients", {"search_term": "Ana"}), "a")

        assert reply["result"]["isError"] is False
        assert reply["result"]["content"][0]["type"] == "text"
        payload = _payload(reply)
        assert payload["success"] is True
        assert payload["data"] == [{"id": 7, "nome": "Ana"}]

    async def test_soft_failure_sets_is_error(self, dispatcher, upstream, mock_response):
        upstream.routes[("POST", "/agendamentos/validar-conflito")] = mock_response({"disponivel": False})

        reply = await dispatcher.handle(_call("create_appointment", {
            "client_id": 1, "pet_id": 2, "vet_id": 3, "date_time": "2030-05-10 14:00:00",
        }), "a")

        assert reply["result"]["isError"] is True
        assert _payload(reply)["success"] is False
        assert dispatcher.metrics.tool_stats("create_appointment").failed == 1

    async def test_unknown_tool(self, dispatcher):
        reply = await dispatcher.handle(_call("nope"), "a")

        assert reply["error"]["code"] == -32601
        assert reply["error"]["message"] == "Tool not found: nope"
        assert dispatcher.metrics.snapshot()["requests"]["total"] == 0

    async def test_validation_error(self, dispatcher, upstream):
        reply = await dispatcher.handle(_call("search_clients", {"search_term": "ab"}), "a")

        assert reply["error"]["code"] == -32602
        assert "at least 3 characters" in reply["error"]["message"]
        upstream.assert_not_awaited()

    async def test_oversized_amount_is_a_validation_error(self, dispatcher, upstream):
        reply = await dispatcher.handle(_call("create_receivable", {
            "description": "Consulta", "amount": 1e30, "due_date": "2030-01-10",
        }), "a")

        assert reply["error"]["code"] == -32602
        assert "too large" in reply["error"]["message"]
        upstream.assert_not_awaited()

    async def test_upstream_error(self, dispatcher, upstream, mock_response):
        upstream.routes[("GET", "/pets/9")] = mock_response({"error": "not found"}, 404)

        reply = await dispatcher.handle(_call("get_pet", {"pet_id": 9}), "a")

        error = reply["error"]
        assert error["code"] == -32606
        assert error["data"]["status_code"] == 404
        assert error["data"]["endpoint"] == "/pets/9"

        # replayed from the negative cache
        reply = await dispatcher.handle(_call("get_pet", {"pet_id": 9}, msg_id=2), "a")
        assert reply["error"]["code"] == -32606
        assert reply["error"]["data"]["cached"] is True

    async def test_timeout_error(self, dispatcher, upstream):
        upstream.routes[("GET", "/dashboard/indicadores")] = httpx.ReadTimeout("slow")

        reply = await dispatcher.handle(_call("get_dashboard_indicators"), "a")

        assert reply["error"]["code"] == -32607

    async def test_timeout_replayed_from_negative_cache_keeps_its_code(
        self, dispatcher, upstream,
    ):
        upstream.routes[("GET", "/dashboard/indicadores")] = httpx.ReadTimeout("slow")

        first = await dispatcher.handle(_call("get_dashboard_indicators"), "a")
        attempts = upstream.await_count
        second = await dispatcher.handle(_call("get_dashboard_indicators", msg_id=2), "a")

        assert first["error"]["code"] == -32607
        assert second["error"]["code"] == -32607
        assert second["error"]["data"]["cached"] is True
        assert upstream.await_count == attempts

    async def test_unexpected_exception_is_internal_error(self, dispatcher, upstream):
        upstream.routes[("GET", "/dashboard/insights")] = RuntimeError("bug")

        reply = await dispatcher.handle(_call("get_dashboard_insights"), "a")

        assert reply["error"]["code"] == -32603
        assert reply["error"]["message"] == "Internal error"
        stats = dispatcher.metrics.tool_stats("get_dashboard_insights")
        assert stats.failed == 1

    async def test_metrics_record_every_completed_call(self, dispatcher, upstream, mock_response):
        upstream.routes[("GET", "/clientes")] = mock_response([])

        await dispatcher.handle(_call("search_clients", {"search_term": "Ana"}), "a")
        await dispatcher.handle(_call("search_clients", {"search_term": "a"}), "a")

        snapshot = dispatcher.metrics.snapshot()
        assert snapshot["requests"] == {"total": 2, "successful": 1, "failed": 1}
        assert snapshot["top_tools"][0]["name"] == "search_clients"
        assert snapshot["top_tools"][0]["calls"] == 2
