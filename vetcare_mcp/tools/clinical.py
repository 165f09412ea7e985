"""Clinical record tools: vaccinations, exams, anamnesis and pet history.

Everything lives in the ``pets`` namespace under per-pet keys, so each
write invalidates exactly the history it appended to.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any

from pydantic import Field

from vetcare_mcp import config
from vetcare_mcp.tools.registry import (
    Invalidation,
    ToolArgs,
    ToolContext,
    ToolResult,
    as_list,
    read_through,
    registry,
)
from vetcare_mcp.tools.validators import ISODate, RecordId

logger = logging.getLogger(__name__)

DUE_SOON_DAYS = 30


class PetArgs(ToolArgs):
    pet_id: RecordId


class RegisterVaccinationArgs(ToolArgs):
    pet_id: RecordId
    vaccine_id: RecordId
    applied_on: ISODate = Field(description="YYYY-MM-DD")
    next_dose: ISODate | None = Field(None, description="YYYY-MM-DD")
    vet_id: RecordId | None = None
    batch: str | None = None
    dose: str | None = None
    notes: str | None = None


class RequestExamArgs(ToolArgs):
    pet_id: RecordId
    exam_type_id: RecordId
    vet_id: RecordId
    notes: str | None = None


class AnamnesisArgs(ToolArgs):
    pet_id: RecordId
    vet_id: RecordId
    consultation_date: ISODate = Field(description="YYYY-MM-DD")
    anamnesis: str = Field(min_length=1)
    diagnosis: str | None = None
    current_weight: float | None = Field(None, gt=0, description="Weight in kg")


async def _pet_history(ctx: ToolContext, key: str, endpoint: str, **meta: Any) -> ToolResult:
    async def fetch() -> ToolResult:
        records = as_list(await ctx.client.get(endpoint))
        extra = {name: compute(records) for name, compute in meta.items()}
        return ToolResult.ok(records, total=len(records), **extra)

    return await read_through(ctx, "pets", key, fetch, ttl=config.CACHE_TTL_SHORT)


# ── Vaccinations ─────────────────────────────────────────────────────


@registry.tool(
    "register_vaccination",
    "Record a vaccine application for a pet.",
    RegisterVaccinationArgs,
    invalidates=lambda args: [
        Invalidation("pets", key=f"vaccinations:{args.pet_id}"),
        Invalidation("pets", key=f"pet_stats:{args.pet_id}"),
    ],
)
async def register_vaccination(ctx: ToolContext, args: RegisterVaccinationArgs) -> ToolResult:
    payload = {
        "pet_id": args.pet_id,
        "vacina_id": args.vaccine_id,
        "veterinario_id": args.vet_id,
        "data_aplicacao": args.applied_on,
        "proxima_dose": args.next_dose,
        "lote": args.batch or "",
        "dose": args.dose or "",
        "observacoes": args.notes or "",
    }
    created = await ctx.client.post(f"/pets/{args.pet_id}/vacinacao", payload)
    return ToolResult.ok({"vaccination": created, "message": "Vaccination recorded"})


@registry.tool("get_vaccination_history", "A pet's vaccination history.", PetArgs)
async def get_vaccination_history(ctx: ToolContext, args: PetArgs) -> ToolResult:
    return await _pet_history(ctx, f"vaccinations:{args.pet_id}", f"/pets/{args.pet_id}/vacinacoes")


def classify_vaccines(
    vaccinations: list[dict[str, Any]], today: datetime.date,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Split records into overdue and due within ``DUE_SOON_DAYS``."""
    overdue, due_soon = [], []
    for record in vaccinations:
        raw = record.get("proxima_dose") or record.get("data_proxima_dose")
        if not raw:
            continue
        try:
            next_dose = datetime.date.fromisoformat(str(raw)[:10])
        except ValueError:
            logger.warning("Skipping vaccination with unparseable next dose %r", raw)
            continue
        days = (next_dose - today).days
        if days < 0:
            overdue.append({**record, "days_overdue": -days})
        elif days <= DUE_SOON_DAYS:
            due_soon.append({**record, "days_remaining": days})
    return overdue, due_soon


@registry.tool(
    "check_overdue_vaccines",
    f"List a pet's overdue vaccines and those due within {DUE_SOON_DAYS} days.",
    PetArgs,
)
async def check_overdue_vaccines(ctx: ToolContext, args: PetArgs) -> ToolResult:
    history = await get_vaccination_history(ctx, args)
    if not history.success:
        return history

    overdue, due_soon = classify_vaccines(history.data, datetime.date.today())
    if overdue:
        message = f"{len(overdue)} overdue vaccine(s)"
    elif due_soon:
        message = f"{len(due_soon)} vaccine(s) due soon"
    else:
        message = "All vaccines up to date"
    return ToolResult.ok({
        "has_overdue": bool(overdue),
        "overdue": overdue,
        "due_soon": due_soon,
        "total_overdue": len(overdue),
        "total_due_soon": len(due_soon),
        "message": message,
    })


# ── History & exams ──────────────────────────────────────────────────


@registry.tool("get_clinical_history", "A pet's medical history.", PetArgs)
async def get_clinical_history(ctx: ToolContext, args: PetArgs) -> ToolResult:
    return await _pet_history(
        ctx, f"clinical_history:{args.pet_id}", f"/pets/{args.pet_id}/historico-medico",
    )


@registry.tool(
    "get_weight_history",
    "A pet's weight history, most recent first, with the current weight.",
    PetArgs,
)
async def get_weight_history(ctx: ToolContext, args: PetArgs) -> ToolResult:
    return await _pet_history(
        ctx, f"weight_history:{args.pet_id}", f"/pets/{args.pet_id}/historico-peso",
        current_weight=lambda records: records[0].get("peso") if records else None,
    )


@registry.tool("get_pet_exams", "Exams requested for a pet and their results.", PetArgs)
async def get_pet_exams(ctx: ToolContext, args: PetArgs) -> ToolResult:
    return await _pet_history(ctx, f"exams:{args.pet_id}", f"/pets/{args.pet_id}/exames")


@registry.tool(
    "request_exam",
    "Request an exam for a pet. Use list_exam_types for the available types.",
    RequestExamArgs,
    invalidates=lambda args: [Invalidation("pets", key=f"exams:{args.pet_id}")],
)
async def request_exam(ctx: ToolContext, args: RequestExamArgs) -> ToolResult:
    payload = {
        "tipo_exame_id": args.exam_type_id,
        "veterinario_id": args.vet_id,
        "observacoes": args.notes or "",
    }
    created = await ctx.client.post(f"/pets/{args.pet_id}/solicitar-exame", payload)
    return ToolResult.ok({"exam": created, "message": "Exam requested"})


def _anamnesis_invalidations(args: AnamnesisArgs) -> list[Invalidation]:
    stale = [
        Invalidation("pets", key=f"clinical_history:{args.pet_id}"),
        Invalidation("pets", key=f"pet_stats:{args.pet_id}"),
    ]
    if args.current_weight is not None:
        stale.append(Invalidation("pets", key=f"weight_history:{args.pet_id}"))
    return stale


@registry.tool(
    "record_anamnesis",
    "Record a consultation's anamnesis and diagnosis, optionally with the current weight.",
    AnamnesisArgs,
    invalidates=_anamnesis_invalidations,
)
async def record_anamnesis(ctx: ToolContext, args: AnamnesisArgs) -> ToolResult:
    payload = {
        "veterinario_id": args.vet_id,
        "data_consulta": args.consultation_date,
        "anamnese": args.anamnesis,
        "diagnostico": args.diagnosis or "",
        "peso_atual": args.current_weight,
    }
    created = await ctx.client.post(f"/pets/{args.pet_id}/anamnese", payload)
    return ToolResult.ok({"anamnesis": created, "message": "Anamnesis recorded"})


@registry.tool("get_pet_statistics", "Visit, vaccine and spending statistics for a pet.", PetArgs)
async def get_pet_statistics(ctx: ToolContext, args: PetArgs) -> ToolResult:
    async def fetch() -> ToolResult:
        return ToolResult.ok(await ctx.client.get(f"/pets/{args.pet_id}/estatisticas") or {})

    return await read_through(ctx, "pets", f"pet_stats:{args.pet_id}", fetch, ttl=config.CACHE_TTL_SHORT)
