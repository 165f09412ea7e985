"""FastAPI route definitions for the VetCare MCP server."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from vetcare_mcp import config
from vetcare_mcp.api.schemas import (
    HealthResponse,
    RegistryHealth,
    UpstreamHealth,
    WellKnownResponse,
)
from vetcare_mcp.mcp import protocol
from vetcare_mcp.mcp.dispatcher import McpDispatcher
from vetcare_mcp.mcp.protocol import ErrorCode

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_dispatcher(request: Request) -> McpDispatcher:
    """Retrieve the dispatcher built by the lifespan (see ``server.py``)."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(
            status_code=503,
            detail="The server is still starting up. Please try again in a moment.",
        )
    return dispatcher


def _caller_id(request: Request) -> str:
    header = request.headers.get("X-Client-ID")
    if header:
        return header
    return request.client.host if request.client else "unknown"


# ── Endpoints ────────────────────────────────────────────────────────


@router.post("/")
async def mcp_endpoint(request: Request) -> Response:
    """JSON-RPC entry point for MCP clients.

    Protocol errors are reported inside the envelope with HTTP 200;
    notifications are acknowledged with 202 and no body.
    """
    dispatcher = _get_dispatcher(request)
    request_id = getattr(request.state, "request_id", "-")

    try:
        message = json.loads(await request.body())
    except ValueError:
        logger.warning("[%s] Unparseable JSON-RPC body", request_id)
        return JSONResponse(
            protocol.error_response(None, ErrorCode.PARSE_ERROR, "Parse error: body is not valid JSON"),
        )

    reply = await dispatcher.handle(message, _caller_id(request), request_id)
    if reply is None:
        return Response(status_code=202)
    return JSONResponse(reply)


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Upstream reachability, registry consistency and lifecycle state."""
    dispatcher = _get_dispatcher(request)
    upstream = await dispatcher.ctx.client.ping()
    listed = len(dispatcher.registry.list_definitions())
    implemented = len(dispatcher.registry)
    consistent = dispatcher.registry.is_consistent()

    return HealthResponse(
        status="healthy" if consistent and upstream != "error" else "unhealthy",
        api=UpstreamHealth(status=upstream, base_url=dispatcher.ctx.client.base_url),
        tools=RegistryHealth(defined=listed, implemented=implemented, match=consistent),
        lifecycle=dispatcher.state.value,
        features=config.enabled_features(),
        timestamp=datetime.now(UTC).isoformat(),
    )


@router.get("/metrics")
async def metrics(request: Request) -> dict:
    """Per-tool statistics plus cache, rate-limiter and upstream counters."""
    dispatcher = _get_dispatcher(request)
    return dispatcher.metrics.snapshot(
        cache_stats=dispatcher.ctx.caches.stats(),
        rate_limiter_stats=dispatcher.rate_limiter.stats(),
        upstream_stats=dispatcher.ctx.client.stats(),
    )


@router.get("/.well-known/mcp", response_model=WellKnownResponse)
async def well_known():
    """MCP discovery document."""
    return WellKnownResponse()
