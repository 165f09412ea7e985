"""Reference data: services, plans, veterinarians, vaccines and exam types.

All of it changes rarely and is cached in the long TTL tier.
"""

from __future__ import annotations

from collections.abc import Callable

from pydantic import Field

from vetcare_mcp.tools.registry import (
    NoArgs,
    ToolArgs,
    ToolContext,
    ToolResult,
    as_list,
    read_through,
    registry,
)
from vetcare_mcp.tools.validators import SearchTerm2


class SearchServicesArgs(ToolArgs):
    search_term: SearchTerm2 = Field(description="e.g. consulta, banho, vacina (min. 2 characters)")


def _listing(namespace: str, key: str, endpoint: str, params: dict | None = None) -> Callable:
    async def executor(ctx: ToolContext, args: NoArgs) -> ToolResult:
        async def fetch() -> ToolResult:
            records = as_list(await ctx.client.get(endpoint, params))
            return ToolResult.ok(records, total=len(records))

        return await read_through(ctx, namespace, key, fetch)

    return executor


list_active_services = registry.tool(
    "list_active_services", "List every active service with its price and duration.",
)(_listing("services", "active_services", "/servicos-ativos"))

list_plans = registry.tool(
    "list_plans", "List the health plans offered by the clinic.",
)(_listing("services", "plans", "/planos"))

list_exam_types = registry.tool(
    "list_exam_types", "List the exam types that can be requested.",
)(_listing("services", "exam_types", "/tipos-exame", {"ativo": 1}))

list_veterinarians = registry.tool(
    "list_veterinarians", "List the clinic's active veterinarians.",
)(_listing("vets", "active_vets", "/veterinarios"))

list_active_vaccines = registry.tool(
    "list_active_vaccines", "List the vaccines currently in use.",
)(_listing("vaccines", "active_vaccines", "/vacinas-ativas"))


async def find_services(ctx: ToolContext, term: str) -> ToolResult:
    async def fetch() -> ToolResult:
        records = as_list(await ctx.client.get("/servicos", {"busca": term}))
        return ToolResult.ok(records, total=len(records))

    return await read_through(ctx, "services", f"service_search:{term.lower()}", fetch)


@registry.tool(
    "search_services",
    "Search services by name or type. A term of at least 2 characters is required.",
    SearchServicesArgs,
)
async def search_services(ctx: ToolContext, args: SearchServicesArgs) -> ToolResult:
    return await find_services(ctx, args.search_term)
