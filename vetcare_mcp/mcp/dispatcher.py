"""MCP request dispatcher.

Order of checks for every inbound message:

1. reject a malformed envelope (``-32600``);
2. admit the caller through the rate limiter (``-32605`` + ``retry_after``);
3. route the method: ``initialize``, ``notifications/initialized``,
   ``ping``, ``tools/list``, ``tools/call``;
4. turn results or classified exceptions into JSON-RPC envelopes;
5. record every ``tools/call`` outcome and latency in the metrics.

The lifecycle (uninitialized → initialized → serving) is tracked and
reported on ``/health`` but does not gate calls: clients that skip the
handshake are still served.
"""

from __future__ import annotations

import enum
import logging
import time
from typing import Any

from vetcare_mcp.errors import RateLimitExceeded, ToolValidationError, VetCareError
from vetcare_mcp.mcp import protocol
from vetcare_mcp.mcp.protocol import ErrorCode, ProtocolError
from vetcare_mcp.services.metrics import MetricsCollector
from vetcare_mcp.services.rate_limiter import SlidingWindowRateLimiter
from vetcare_mcp.tools.registry import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)


class LifecycleState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    SERVING = "serving"


class McpDispatcher:
    """Routes JSON-RPC messages to the tool registry."""

    def __init__(
        self,
        registry: ToolRegistry,
        ctx: ToolContext,
        rate_limiter: SlidingWindowRateLimiter,
        metrics: MetricsCollector,
    ):
        self.registry = registry
        self.ctx = ctx
        self.rate_limiter = rate_limiter
        self.metrics = metrics
        self.state = LifecycleState.UNINITIALIZED
        self._handlers = {
            "initialize": self._initialize,
            "notifications/initialized": self._initialized,
            "ping": self._ping,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
        }

    # ── Entry point ──────────────────────────────────────────────────

    async def handle(
        self,
        message: Any,
        caller_id: str,
        request_id: str = "-",
    ) -> dict[str, Any] | None:
        """Process one message.  Returns ``None`` for notifications."""
        msg_id = message.get("id") if isinstance(message, dict) else None
        notification = isinstance(message, dict) and "id" not in message
        try:
            method = self._validate_envelope(message)
            self._admit(caller_id)
            handler = self._handlers.get(method)
            if handler is None:
                raise ProtocolError(ErrorCode.METHOD_NOT_FOUND, f"Method not found: {method}")
            result = await handler(message.get("params"), request_id)
        except Exception as exc:  # every failure becomes an error envelope
            if notification:
                logger.warning("[%s] Notification failed: %s", request_id, exc)
                return None
            return self._error(msg_id, exc, request_id)

        if notification:
            return None
        return protocol.success_response(msg_id, result)

    @staticmethod
    def _validate_envelope(message: Any) -> str:
        if not isinstance(message, dict):
            raise ProtocolError(ErrorCode.INVALID_REQUEST, "Invalid Request: expected a JSON object")
        if message.get("jsonrpc") != protocol.JSONRPC_VERSION:
            raise ProtocolError(ErrorCode.INVALID_REQUEST, 'Invalid Request: jsonrpc must be "2.0"')
        method = message.get("method")
        if not isinstance(method, str) or not method:
            raise ProtocolError(ErrorCode.INVALID_REQUEST, "Invalid Request: method is required")
        return method

    def _admit(self, caller_id: str) -> None:
        if not self.rate_limiter.check_limit(caller_id):
            raise RateLimitExceeded(caller_id, self.rate_limiter.get_remaining_time(caller_id))

    def _error(self, msg_id: Any, exc: Exception, request_id: str) -> dict[str, Any]:
        code, message, data = protocol.error_for_exception(exc)
        if code is ErrorCode.INTERNAL_ERROR:
            logger.exception("[%s] Internal error", request_id)
        elif isinstance(exc, ToolValidationError):
            logger.warning("[%s] Validation failed: %s", request_id, exc)
        return protocol.error_response(msg_id, code, message, data)

    # ── Methods ──────────────────────────────────────────────────────

    async def _initialize(self, params: Any, request_id: str) -> dict[str, Any]:
        client = (params or {}).get("clientInfo", {}) if isinstance(params, dict) else {}
        logger.info("[%s] initialize from %s", request_id, client.get("name", "unknown client"))
        self.state = LifecycleState.INITIALIZED
        return protocol.initialize_result()

    async def _initialized(self, params: Any, request_id: str) -> dict[str, Any]:
        self.state = LifecycleState.SERVING
        return {}

    async def _ping(self, params: Any, request_id: str) -> dict[str, Any]:
        return {}

    async def _tools_list(self, params: Any, request_id: str) -> dict[str, Any]:
        self._mark_serving()
        return {"tools": self.registry.list_definitions()}

    async def _tools_call(self, params: Any, request_id: str) -> dict[str, Any]:
        self._mark_serving()
        if not isinstance(params, dict) or not isinstance(params.get("name"), str):
            raise ProtocolError(ErrorCode.INVALID_PARAMS, "Invalid params: tool name is required")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise ProtocolError(ErrorCode.INVALID_PARAMS, "Invalid params: arguments must be an object")

        name = params["name"]
        definition = self.registry.get(name)
        started = time.perf_counter()
        try:
            result = await definition.invoke(self.ctx, arguments)
        except Exception as exc:
            latency_ms = (time.perf_counter() - started) * 1000
            self.metrics.record_invocation(
                name, success=False, latency_ms=latency_ms, error_type=type(exc).__name__,
            )
            if isinstance(exc, VetCareError):
                logger.info("[%s] %s failed in %.0fms: %s", request_id, name, latency_ms, exc)
            raise

        latency_ms = (time.perf_counter() - started) * 1000
        self.metrics.record_invocation(
            name,
            success=result.success,
            latency_ms=latency_ms,
            error_type=None if result.success else "ToolFailure",
        )
        logger.info(
            "[%s] %s %s in %.0fms",
            request_id, name, "ok" if result.success else "soft-failed", latency_ms,
        )
        return protocol.tool_call_result(result)

    def _mark_serving(self) -> None:
        if self.state is LifecycleState.INITIALIZED:
            self.state = LifecycleState.SERVING
