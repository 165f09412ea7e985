"""VetCare MCP: a Model Context Protocol server for veterinary clinic management.

Architecture Overview
=====================

AI agents speak JSON-RPC 2.0 to this server; the server turns each
``tools/call`` into validated, cached and retried calls against the
VetCare REST API.

1. **Dispatcher** (``mcp/``) checks the envelope, applies the per-caller
   rate limit, routes ``initialize`` / ``tools/list`` / ``tools/call`` and
   maps classified errors to JSON-RPC error codes.
2. **Tools** (``tools/``) validate arguments with pydantic models,
   read through per-dataset caches, call the upstream client, shape the
   result and invalidate the cache regions a write made stale.
3. **Services** (``services/``) hold the resilience layer: TTL caches with
   negative entries, the sliding-window rate limiter, the retrying
   upstream client and the metrics collector.

Key Design Decisions
--------------------
- **Errors**: every layer raises from ``errors.py``; only
  ``mcp/protocol.py`` knows error codes.  Soft failures (slot taken,
  workflow step failed) are normal results with ``isError: true``.
- **Caching**: one cache per dataset with a TTL tier chosen by
  volatility; upstream failures are negatively cached per request in a
  dedicated ``upstream`` namespace.
- **Invalidation**: each write declares what it makes stale; the registry
  applies it only after the write succeeded.
- **Concurrency**: a single event loop, no locks; periodic sweeps and the
  metrics flush are asyncio tasks.

Package Structure
-----------------
- ``vetcare_mcp/config.py``: Centralized configuration from environment variables
- ``vetcare_mcp/errors.py``: Classified error hierarchy
- ``vetcare_mcp/server.py``: FastAPI application and lifespan wiring
- ``vetcare_mcp/api/``: Operational routes and pydantic schemas
- ``vetcare_mcp/mcp/``: JSON-RPC dispatcher and protocol helpers
- ``vetcare_mcp/services/``: Cache, rate limiter, VetCare client, metrics
- ``vetcare_mcp/tools/``: Tool registry, validators and executors
"""
