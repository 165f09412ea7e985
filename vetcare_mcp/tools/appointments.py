"""Appointment scheduling tools.

Appointment data is the most volatile dataset: upcoming-appointment
listings live in the short TTL tier and every write clears the whole
``appointments`` namespace.
"""

from __future__ import annotations

import datetime
import logging

from pydantic import Field

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
from vetcare_mcp.tools.validators import (
    AppointmentStatus,
    AppointmentType,
    DateTime,
    ISODate,
    Money,
    RecordId,
)

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 30
SLOT_TAKEN = "Slot not available: it conflicts with another appointment."


class ListAppointmentsArgs(ToolArgs):
    client_id: RecordId | None = None
    pet_id: RecordId | None = None
    status: AppointmentStatus | None = None
    date: ISODate | None = None
    start_date: ISODate | None = None
    end_date: ISODate | None = None


class UpcomingAppointmentsArgs(ToolArgs):
    client_id: RecordId
    limit: int | None = Field(None, ge=1)


class SlotArgs(ToolArgs):
    date_time: DateTime = Field(description="YYYY-MM-DD HH:MM:SS")
    vet_id: RecordId
    duration_minutes: int = Field(DEFAULT_DURATION_MINUTES, ge=1)
    appointment_id: RecordId | None = Field(None, description="Appointment being rescheduled, if any")


class AppointmentDetails(ToolArgs):
    date_time: DateTime = Field(description="YYYY-MM-DD HH:MM:SS")
    type: AppointmentType = Field("Consulta", description="Consulta, Retorno, Emergência or Cirurgia")
    service_id: RecordId | None = None
    vet_id: RecordId | None = None
    duration_minutes: int = Field(DEFAULT_DURATION_MINUTES, ge=1)
    price: Money | None = None
    notes: str | None = None
    status: AppointmentStatus = "Agendado"


class CreateAppointmentArgs(AppointmentDetails):
    client_id: RecordId
    pet_id: RecordId


class UpdateStatusArgs(ToolArgs):
    appointment_id: RecordId
    status: AppointmentStatus


def _invalidate_appointments(args) -> list[Invalidation]:
    return [Invalidation("appointments")]


async def slot_availability(ctx: ToolContext, args: SlotArgs) -> dict:
    """Ask the upstream conflict checker whether the vet is free."""
    payload = compact({
        "data_hora": args.date_time,
        "veterinario_id": args.vet_id,
        "duracao_minutos": args.duration_minutes,
        "agendamento_id": args.appointment_id,
    })
    answer = await ctx.client.post("/agendamentos/validar-conflito", payload) or {}
    return {
        "available": answer.get("disponivel") is True,
        "message": answer.get("message", ""),
        "conflict": answer.get("conflito"),
    }


@registry.tool(
    "list_appointments",
    "List appointments filtered by client, pet, status or date range.",
    ListAppointmentsArgs,
)
async def list_appointments(ctx: ToolContext, args: ListAppointmentsArgs) -> ToolResult:
    params = compact({
        "cliente_id": args.client_id,
        "pet_id": args.pet_id,
        "status": args.status,
        "data": args.date,
        "data_inicio": args.start_date,
        "data_fim": args.end_date,
    })
    appointments = as_list(await ctx.client.get("/agendamentos", params or None))
    return ToolResult.ok(appointments, total=len(appointments))


@registry.tool(
    "list_upcoming_appointments",
    "List a client's appointments from today onwards, soonest first.",
    UpcomingAppointmentsArgs,
)
async def list_upcoming_appointments(ctx: ToolContext, args: UpcomingAppointmentsArgs) -> ToolResult:
    async def fetch() -> ToolResult:
        params = {"cliente_id": args.client_id, "data_inicio": datetime.date.today().isoformat()}
        appointments = as_list(await ctx.client.get("/agendamentos", params))
        appointments.sort(key=lambda a: str(a.get("data_hora") or ""))
        if args.limit:
            appointments = appointments[: args.limit]
        return ToolResult.ok(appointments, total=len(appointments))

    key = f"upcoming:{args.client_id}:{args.limit or 'all'}"
    return await read_through(ctx, "appointments", key, fetch)


@registry.tool(
    "check_slot_availability",
    "Check whether a veterinarian is free at a given date and time.",
    SlotArgs,
)
async def check_slot_availability(ctx: ToolContext, args: SlotArgs) -> ToolResult:
    return ToolResult.ok(await slot_availability(ctx, args))


@registry.tool(
    "create_appointment",
    "Book an appointment. When a veterinarian is given the slot is checked first.",
    CreateAppointmentArgs,
    invalidates=_invalidate_appointments,
)
async def create_appointment(ctx: ToolContext, args: CreateAppointmentArgs) -> ToolResult:
    if args.vet_id is not None:
        slot = await slot_availability(
            ctx,
            SlotArgs(date_time=args.date_time, vet_id=args.vet_id, duration_minutes=args.duration_minutes),
        )
        if not slot["available"]:
            logger.info("Slot %s for vet %s is taken", args.date_time, args.vet_id)
            return ToolResult.fail(SLOT_TAKEN, {"availability": slot})

    payload = {
        "cliente_id": args.client_id,
        "pet_id": args.pet_id,
        "servico_id": args.service_id,
        "veterinario_id": args.vet_id,
        "data_hora": args.date_time,
        "tipo": args.type,
        "duracao_minutos": args.duration_minutes,
        "valor": args.price,
        "observacoes": args.notes or "",
        "status": args.status,
    }
    created = await ctx.client.post("/agendamentos", payload)
    logger.info("Appointment booked for pet %s at %s", args.pet_id, args.date_time)
    return ToolResult.ok({"appointment": created, "message": "Appointment booked"})


@registry.tool(
    "update_appointment_status",
    "Change an appointment's status (Agendado, Confirmado, Em Atendimento, "
    "Concluído, Cancelado, Faltou).",
    UpdateStatusArgs,
    invalidates=_invalidate_appointments,
)
async def update_appointment_status(ctx: ToolContext, args: UpdateStatusArgs) -> ToolResult:
    await ctx.client.put(f"/agendamentos/{args.appointment_id}/status", {"status": args.status})
    return ToolResult.ok({"message": f"Status updated to: {args.status}"})
