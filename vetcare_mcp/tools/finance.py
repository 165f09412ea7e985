"""Receivables, cash register and sales tools.

Amounts go through :func:`~vetcare_mcp.tools.validators.currency`
(two decimals, never negative) before anything is sent upstream.
"""

from __future__ import annotations

import logging

from pydantic import Field

from vetcare_mcp.tools.registry import (
    Invalidation,
    NoArgs,
    ToolArgs,
    ToolContext,
    ToolResult,
    as_list,
    compact,
    read_through,
    registry,
)
from vetcare_mcp.tools.validators import ISODate, Money, PaymentMethod, RecordId

logger = logging.getLogger(__name__)


class ListReceivablesArgs(ToolArgs):
    status: str | None = Field(None, description="e.g. Pendente, Pago, Vencido")
    due_from: ISODate | None = None
    due_to: ISODate | None = None
    client_id: RecordId | None = None


class CreateReceivableArgs(ToolArgs):
    description: str = Field(min_length=1)
    amount: Money
    due_date: ISODate
    client_id: RecordId | None = None
    category_id: RecordId | None = None
    payment_method: PaymentMethod = "Dinheiro"
    status: str = "Pendente"
    notes: str | None = None


class RegisterPaymentArgs(ToolArgs):
    receivable_id: RecordId
    amount_paid: Money
    paid_on: ISODate
    payment_method: PaymentMethod = "Dinheiro"
    notes: str | None = None


class OpenCashRegisterArgs(ToolArgs):
    opening_balance: Money = 0.0
    notes: str | None = None


class CloseCashRegisterArgs(ToolArgs):
    cash_register_id: RecordId


class SaleItem(ToolArgs):
    product_id: RecordId
    quantity: int = Field(ge=1)
    unit_price: Money
    discount: Money = 0.0


class CreateSaleArgs(ToolArgs):
    items: list[SaleItem] = Field(min_length=1, description="At least one item")
    client_id: RecordId | None = None
    payment_method: PaymentMethod = "Dinheiro"
    total_discount: Money = 0.0
    notes: str | None = None


def _receivables(args) -> list[Invalidation]:
    return [Invalidation("finance", prefix="receivables:")]


def _cash_register(args) -> list[Invalidation]:
    return [Invalidation("finance", prefix="cash_register:")]


# ── Receivables ──────────────────────────────────────────────────────


@registry.tool(
    "list_receivables",
    "List accounts receivable filtered by status, due dates or client.",
    ListReceivablesArgs,
)
async def list_receivables(ctx: ToolContext, args: ListReceivablesArgs) -> ToolResult:
    params = compact({
        "status": args.status,
        "vencimento_inicio": args.due_from,
        "vencimento_fim": args.due_to,
        "cliente_id": args.client_id,
    })

    async def fetch() -> ToolResult:
        records = as_list(await ctx.client.get("/contas-receber", params or None))
        return ToolResult.ok(records, total=len(records))

    key = "receivables:" + "&".join(f"{k}={v}" for k, v in sorted(params.items()))
    return await read_through(ctx, "finance", key, fetch)


@registry.tool(
    "create_receivable",
    "Create an account receivable.",
    CreateReceivableArgs,
    invalidates=_receivables,
)
async def create_receivable(ctx: ToolContext, args: CreateReceivableArgs) -> ToolResult:
    payload = {
        "descricao": args.description,
        "valor": args.amount,
        "vencimento": args.due_date,
        "cliente_id": args.client_id,
        "categoria_id": args.category_id,
        "forma_pagamento": args.payment_method,
        "status": args.status,
        "observacoes": args.notes or "",
    }
    created = await ctx.client.post("/contas-receber", payload)
    return ToolResult.ok({"receivable": created, "message": "Receivable created"})


@registry.tool(
    "register_payment",
    "Register a payment against an account receivable.",
    RegisterPaymentArgs,
    invalidates=_receivables,
)
async def register_payment(ctx: ToolContext, args: RegisterPaymentArgs) -> ToolResult:
    payload = {
        "valor_pago": args.amount_paid,
        "data_pagamento": args.paid_on,
        "forma_pagamento": args.payment_method,
        "observacoes": args.notes or "",
    }
    await ctx.client.post(f"/contas-receber/{args.receivable_id}/pagar", payload)
    logger.info("Payment of %.2f registered on receivable %s", args.amount_paid, args.receivable_id)
    return ToolResult.ok({"message": "Payment registered"})


# ── Cash register ────────────────────────────────────────────────────


@registry.tool("get_open_cash_register", "The currently open cash register, if any.", NoArgs)
async def get_open_cash_register(ctx: ToolContext, args: NoArgs) -> ToolResult:
    async def fetch() -> ToolResult:
        register = await ctx.client.get("/caixa/aberto")
        return ToolResult.ok({"cash_register": register, "open": register is not None})

    return await read_through(ctx, "finance", "cash_register:open", fetch)


@registry.tool(
    "open_cash_register",
    "Open the cash register with an opening balance.",
    OpenCashRegisterArgs,
    invalidates=_cash_register,
)
async def open_cash_register(ctx: ToolContext, args: OpenCashRegisterArgs) -> ToolResult:
    payload = {"valor_inicial": args.opening_balance, "observacoes": args.notes or ""}
    opened = await ctx.client.post("/caixa/abrir", payload)
    return ToolResult.ok({"cash_register": opened, "message": "Cash register opened"})


@registry.tool(
    "close_cash_register",
    "Close a cash register and return its summary.",
    CloseCashRegisterArgs,
    invalidates=_cash_register,
)
async def close_cash_register(ctx: ToolContext, args: CloseCashRegisterArgs) -> ToolResult:
    summary = await ctx.client.post(f"/caixa/{args.cash_register_id}/fechar")
    return ToolResult.ok({"summary": summary, "message": "Cash register closed"})


# ── Sales ────────────────────────────────────────────────────────────


@registry.tool(
    "create_sale",
    "Record a sale of one or more products.",
    CreateSaleArgs,
    invalidates=lambda args: [
        Invalidation("finance"),
        Invalidation("products"),
    ],
)
async def create_sale(ctx: ToolContext, args: CreateSaleArgs) -> ToolResult:
    payload = {
        "cliente_id": args.client_id,
        "itens": [
            {
                "produto_id": item.product_id,
                "quantidade": item.quantity,
                "valor_unitario": item.unit_price,
                "desconto": item.discount,
            }
            for item in args.items
        ],
        "forma_pagamento": args.payment_method,
        "desconto_total": args.total_discount,
        "observacoes": args.notes or "",
    }
    sale = await ctx.client.post("/vendas", payload)
    logger.info("Sale recorded with %d item(s)", len(args.items))
    return ToolResult.ok({"sale": sale, "message": "Sale recorded"})
