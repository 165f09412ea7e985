"""Federated search across clients, pets, products and services."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import Field

from vetcare_mcp.errors import UpstreamError
from vetcare_mcp.tools.registry import ToolArgs, ToolContext, ToolResult, as_list, registry
from vetcare_mcp.tools.validators import SearchTerm3

logger = logging.getLogger(__name__)

MAX_PER_SOURCE = 10


class GlobalSearchArgs(ToolArgs):
    term: SearchTerm3 = Field(description="Search term (min. 3 characters)")


def _contains(record: dict[str, Any], term: str, *fields: str) -> bool:
    return any(term in str(record.get(f) or "").lower() for f in fields)


async def _clients(ctx: ToolContext, term: str) -> list[Any]:
    return as_list(await ctx.client.get("/clientes", {"busca": term}))


async def _pets(ctx: ToolContext, term: str) -> list[Any]:
    # /pets has no search parameter; filter the first page locally
    pets = as_list(await ctx.client.get("/pets", {"page": 1}))
    return [p for p in pets if _contains(p, term.lower(), "nome", "especie")]


async def _products(ctx: ToolContext, term: str) -> list[Any]:
    return as_list(await ctx.client.get("/produtos", {"busca": term}))


async def _services(ctx: ToolContext, term: str) -> list[Any]:
    services = as_list(await ctx.client.get("/servicos"))
    return [s for s in services if _contains(s, term.lower(), "nome", "tipo")]


SOURCES = {
    "clients": _clients,
    "pets": _pets,
    "products": _products,
    "services": _services,
}


@registry.tool(
    "global_search",
    "Search clients, pets, products and services at once. Sources that fail are "
    "listed in meta.failed_sources instead of failing the whole search.",
    GlobalSearchArgs,
)
async def global_search(ctx: ToolContext, args: GlobalSearchArgs) -> ToolResult:
    outcomes = await asyncio.gather(
        *(fetch(ctx, args.term) for fetch in SOURCES.values()),
        return_exceptions=True,
    )

    results: dict[str, list[Any]] = {}
    failed: list[str] = []
    errors: list[UpstreamError] = []
    for name, outcome in zip(SOURCES, outcomes):
        if isinstance(outcome, UpstreamError):
            logger.warning("global_search: source %s failed: %s", name, outcome)
            failed.append(name)
            errors.append(outcome)
            results[name] = []
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            results[name] = outcome[:MAX_PER_SOURCE]

    if len(failed) == len(SOURCES):
        raise errors[0]

    return ToolResult.ok(
        results,
        totals={name: len(hits) for name, hits in results.items()},
        term=args.term,
        failed_sources=failed,
    )
