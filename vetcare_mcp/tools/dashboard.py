"""Management dashboard, commissions and alert tools."""

from __future__ import annotations

from pydantic import Field

from vetcare_mcp.tools.registry import (
    NoArgs,
    ToolArgs,
    ToolContext,
    ToolResult,
    as_list,
    compact,
    read_through,
    registry,
)
from vetcare_mcp.tools.validators import RecordId


class CommissionsArgs(ToolArgs):
    employee_id: RecordId | None = None
    month: int | None = Field(None, ge=1, le=12)
    year: int | None = Field(None, ge=2000)
    status: str | None = None


@registry.tool(
    "get_dashboard_indicators",
    "Today's key indicators: appointments, revenue, new clients.",
    NoArgs,
)
async def get_dashboard_indicators(ctx: ToolContext, args: NoArgs) -> ToolResult:
    async def fetch() -> ToolResult:
        return ToolResult.ok(await ctx.client.get("/dashboard/indicadores"))

    return await read_through(ctx, "dashboard", "indicators", fetch)


@registry.tool("get_dashboard_insights", "Automatic insights about the clinic's activity.", NoArgs)
async def get_dashboard_insights(ctx: ToolContext, args: NoArgs) -> ToolResult:
    return ToolResult.ok(await ctx.client.get("/dashboard/insights"))


@registry.tool("get_financial_statistics", "Revenue and receivables statistics.", NoArgs)
async def get_financial_statistics(ctx: ToolContext, args: NoArgs) -> ToolResult:
    return ToolResult.ok(await ctx.client.get("/dashboard/estatisticas-financeiras"))


@registry.tool(
    "list_commissions",
    "List staff commissions filtered by employee, month, year or status.",
    CommissionsArgs,
)
async def list_commissions(ctx: ToolContext, args: CommissionsArgs) -> ToolResult:
    params = compact({
        "funcionario_id": args.employee_id,
        "mes": args.month,
        "ano": args.year,
        "status": args.status,
    })
    records = as_list(await ctx.client.get("/comissoes", params or None))
    return ToolResult.ok(records, total=len(records))


@registry.tool("get_alerts", "Operational alerts: low stock, overdue bills, missed visits.", NoArgs)
async def get_alerts(ctx: ToolContext, args: NoArgs) -> ToolResult:
    payload = await ctx.client.get("/alertas")
    if isinstance(payload, dict) and "alertas" in payload:
        alerts = payload["alertas"] or []
        return ToolResult.ok(alerts, total=payload.get("total", len(alerts)))
    alerts = as_list(payload)
    return ToolResult.ok(alerts, total=len(alerts))


@registry.tool("get_alert_badge", "Counts of critical and warning alerts.", NoArgs)
async def get_alert_badge(ctx: ToolContext, args: NoArgs) -> ToolResult:
    badge = await ctx.client.get("/alertas/badge")
    return ToolResult.ok(badge or {"criticos": 0, "avisos": 0, "total": 0})
