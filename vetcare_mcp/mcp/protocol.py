"""JSON-RPC 2.0 envelopes and the MCP error-code table.

This is the only module that knows protocol error codes: everything
below the dispatcher raises classified exceptions from
:mod:`vetcare_mcp.errors`, and :func:`error_for_exception` maps them here.
"""

from __future__ import annotations

import json
from enum import IntEnum
from typing import Any

from vetcare_mcp.errors import (
    RateLimitExceeded,
    ToolNotFoundError,
    ToolValidationError,
    UpstreamError,
    UpstreamTimeoutError,
)
from vetcare_mcp.tools.registry import ToolResult

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "vetcare-mcp"
SERVER_VERSION = "2.0.0"


class ErrorCode(IntEnum):
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    RATE_LIMIT_ERROR = -32605
    API_ERROR = -32606
    TIMEOUT_ERROR = -32607


class ProtocolError(Exception):
    """An envelope-level problem detected by the dispatcher itself."""

    def __init__(self, code: ErrorCode, message: str, **data: Any):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(message)


def success_response(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(
    request_id: Any,
    code: ErrorCode,
    message: str,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build an error envelope; ``data`` always carries ``success: false``."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": {
            "code": int(code),
            "message": message,
            "data": {"success": False, "error": message, **(data or {})},
        },
    }


def error_for_exception(exc: BaseException) -> tuple[ErrorCode, str, dict[str, Any]]:
    """Map a classified exception to ``(code, message, extra data)``."""
    if isinstance(exc, ProtocolError):
        return exc.code, exc.message, dict(exc.data)
    if isinstance(exc, RateLimitExceeded):
        return ErrorCode.RATE_LIMIT_ERROR, str(exc), {"retry_after": exc.retry_after}
    if isinstance(exc, ToolNotFoundError):
        return ErrorCode.METHOD_NOT_FOUND, str(exc), {}
    if isinstance(exc, ToolValidationError):
        return ErrorCode.INVALID_PARAMS, str(exc), {}
    if isinstance(exc, UpstreamError):
        data: dict[str, Any] = {"endpoint": exc.endpoint}
        if exc.status_code is not None:
            data["status_code"] = exc.status_code
        if exc.from_cache:
            data["cached"] = True
        if isinstance(exc, UpstreamTimeoutError):
            return ErrorCode.TIMEOUT_ERROR, str(exc), data
        return ErrorCode.API_ERROR, str(exc), data
    return ErrorCode.INTERNAL_ERROR, "Internal error", {}


def tool_call_result(result: ToolResult) -> dict[str, Any]:
    """Wrap a tool result as MCP text content; soft failures set ``isError``."""
    return {
        "content": [
            {
                "type": "text",
                "text": json.dumps(result.to_dict(), ensure_ascii=False, indent=2, default=str),
            }
        ],
        "isError": not result.success,
    }


def initialize_result() -> dict[str, Any]:
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": {"tools": {"listChanged": False}},
        "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
    }
