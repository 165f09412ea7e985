"""Product catalogue and stock tools."""

from __future__ import annotations

import logging

from pydantic import Field, model_validator

from vetcare_mcp.tools import validators
from vetcare_mcp.tools.registry import (
    Invalidation,
    ToolArgs,
    ToolContext,
    ToolResult,
    as_list,
    compact,
    read_through,
    registry,
)
from vetcare_mcp.tools.validators import Money

logger = logging.getLogger(__name__)

MAX_RESULTS = 100


class SearchProductsArgs(ToolArgs):
    search_term: str | None = Field(None, description="Name or barcode (min. 3 characters)")
    category: str | None = None
    low_stock: bool = False

    @model_validator(mode="after")
    def _require_filter(self):
        if not (self.search_term or self.category or self.low_stock):
            raise ValueError(
                "Provide at least one filter: search_term (min. 3 characters), "
                "category or low_stock=true"
            )
        if self.search_term is not None:
            self.search_term = validators.search_term(self.search_term, 3)
        return self


class CreateProductArgs(ToolArgs):
    name: str = Field(min_length=1)
    category: str = Field(min_length=1)
    sale_price: Money
    cost_price: Money | None = None
    barcode: str | None = None
    stock: int = Field(0, ge=0)
    min_stock: int = Field(0, ge=0)
    unit: str = "un"
    active: bool = True


@registry.tool(
    "search_products",
    "Search active products by term, category or low stock. At least one filter "
    f"is required and at most {MAX_RESULTS} products are returned.",
    SearchProductsArgs,
)
async def search_products(ctx: ToolContext, args: SearchProductsArgs) -> ToolResult:
    params = compact({
        "busca": args.search_term,
        "categoria": args.category,
        "estoque_baixo": 1 if args.low_stock else None,
        "ativo": 1,
    })

    async def fetch() -> ToolResult:
        records = as_list(await ctx.client.get("/produtos", params))
        return ToolResult.ok(
            records[:MAX_RESULTS],
            total=min(len(records), MAX_RESULTS),
            limited=len(records) > MAX_RESULTS,
        )

    key = "product_search:" + "&".join(f"{k}={v}" for k, v in sorted(params.items()))
    return await read_through(ctx, "products", key.lower(), fetch)


@registry.tool(
    "create_product",
    "Register a product in the catalogue.",
    CreateProductArgs,
    invalidates=lambda args: [Invalidation("products")],
)
async def create_product(ctx: ToolContext, args: CreateProductArgs) -> ToolResult:
    payload = {
        "nome": args.name,
        "categoria": args.category,
        "codigo_barras": args.barcode or "",
        "preco_custo": args.cost_price,
        "preco_venda": args.sale_price,
        "estoque_atual": args.stock,
        "estoque_minimo": args.min_stock,
        "unidade": args.unit,
        "ativo": 1 if args.active else 0,
    }
    created = await ctx.client.post("/produtos", payload)
    if isinstance(created, dict) and isinstance(created.get("produto"), dict):
        created = created["produto"]
    logger.info("Product created: %s", args.name)
    return ToolResult.ok({"product": created, "message": "Product created"})
