"""FastAPI server for the VetCare MCP server.

Run with:
    uvicorn vetcare_mcp.server:app --host 0.0.0.0 --port 5150
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from vetcare_mcp import config
from vetcare_mcp.api.routes import router
from vetcare_mcp.errors import ConfigurationError
from vetcare_mcp.mcp import protocol
from vetcare_mcp.mcp.dispatcher import McpDispatcher
from vetcare_mcp.services.cache import CacheNamespaces
from vetcare_mcp.services.metrics import FLUSH_INTERVAL_SECONDS, MetricsCollector
from vetcare_mcp.services.rate_limiter import SlidingWindowRateLimiter
from vetcare_mcp.services.vetcare_client import VetCareClient
from vetcare_mcp.tools import ToolContext, registry

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def build_dispatcher(transport: httpx.AsyncBaseTransport | None = None) -> McpDispatcher:
    """Wire caches, client, limiter and metrics into a dispatcher."""
    if not registry.is_consistent():
        raise ConfigurationError("Tool registry is inconsistent: definitions and executors differ")

    caches = CacheNamespaces.build()
    client = VetCareClient(failures=caches["upstream"], transport=transport)
    metrics = MetricsCollector()
    metrics.register_tools(registry.names())
    return McpDispatcher(
        registry,
        ToolContext(client=client, caches=caches),
        SlidingWindowRateLimiter(),
        metrics,
    )


# ── Background tasks ─────────────────────────────────────────────────


async def _sweep_periodically(dispatcher: McpDispatcher, interval: float) -> None:
    """Evict expired cache entries and idle rate-limit windows."""
    while True:
        await asyncio.sleep(interval)
        dispatcher.ctx.caches.cleanup_all()
        dropped = dispatcher.rate_limiter.sweep()
        if dropped:
            logger.debug("Rate limiter dropped %d idle identifiers", dropped)


async def _flush_metrics_periodically(metrics: MetricsCollector, interval: float) -> None:
    """Drain the metrics buffer; publishing (boto3) runs in a worker thread."""
    while True:
        await asyncio.sleep(interval)
        batch = metrics.drain()
        if batch:
            await asyncio.to_thread(metrics.publish, batch)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the dispatcher once, start the sweepers, close the client on exit."""
    dispatcher = build_dispatcher()
    logger.info("%d tools registered", len(registry))

    upstream = await dispatcher.ctx.client.ping()
    if upstream == "healthy":
        logger.info("VetCare API reachable at %s", dispatcher.ctx.client.base_url)
    else:
        logger.warning("VetCare API %s at startup (%s)", upstream, dispatcher.ctx.client.base_url)

    application.state.dispatcher = dispatcher
    tasks = [
        asyncio.create_task(
            _sweep_periodically(dispatcher, config.CACHE_CLEANUP_INTERVAL_SECONDS),
        ),
        asyncio.create_task(
            _flush_metrics_periodically(dispatcher.metrics, FLUSH_INTERVAL_SECONDS),
        ),
    ]
    logger.info("Features enabled: %s", ", ".join(config.enabled_features()) or "none")
    yield

    for task in tasks:
        task.cancel()
    for task in tasks:
        with contextlib.suppress(asyncio.CancelledError):
            await task
    await asyncio.to_thread(dispatcher.metrics.flush)
    logger.info("Final cache stats: %s", dispatcher.ctx.caches.stats())
    await dispatcher.ctx.client.aclose()
    application.state.dispatcher = None


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="VetCare MCP Server",
    description=(
        "Model Context Protocol server exposing veterinary clinic management "
        "tools over the VetCare REST API."
    ),
    version=protocol.SERVER_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID (``X-Request-ID``) for log correlation.

    A caller-supplied ID is echoed back unchanged.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.debug("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router)


@app.get("/")
async def root():
    """Service info and endpoint map."""
    return {
        "name": protocol.SERVER_NAME,
        "version": protocol.SERVER_VERSION,
        "api_base": config.VETCARE_API_URL,
        "endpoints": {
            "mcp": "POST /",
            "health": "GET /health",
            "metadata": "GET /.well-known/mcp",
            "metrics": "GET /metrics",
        },
        "tools_available": len(registry),
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting VetCare MCP server on %s:%d", config.SERVER_HOST, config.SERVER_PORT)
    uvicorn.run(
        "vetcare_mcp.server:app",
        host=config.SERVER_HOST,
        port=config.SERVER_PORT,
    )
