"""Multi-step workflows built from the single-purpose tools.

Steps run in order through the registry, so each one is validated and
applies its own cache invalidations.  Nothing is rolled back: when a step
fails the result names it in ``meta.failed_step`` and carries every record
the earlier steps already created, so the caller can finish by hand.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import Field

from vetcare_mcp.errors import VetCareError
from vetcare_mcp.tools.appointments import AppointmentDetails
from vetcare_mcp.tools.clients import CreateClientArgs
from vetcare_mcp.tools.pets import PetDetails
from vetcare_mcp.tools.registry import ToolArgs, ToolContext, ToolResult, registry
from vetcare_mcp.tools.validators import DateTime, RecordId

logger = logging.getLogger(__name__)


class StepFailed(Exception):
    """One workflow step did not succeed; carries the step name and reason."""

    def __init__(self, step: str, error: str, **detail: Any):
        self.step = step
        self.error = error
        self.detail = {k: v for k, v in detail.items() if v is not None}
        super().__init__(f"{step}: {error}")


class Workflow:
    """Runs named steps against the registry and remembers what they created."""

    def __init__(self, ctx: ToolContext, name: str):
        self.ctx = ctx
        self.name = name
        self.created: dict[str, Any] = {}

    async def step(self, step: str, tool: str, arguments: dict[str, Any]) -> ToolResult:
        try:
            result = await registry.invoke(self.ctx, tool, arguments)
        except VetCareError as exc:
            raise StepFailed(step, str(exc)) from exc
        if not result.success:
            raise StepFailed(step, result.error or "step failed", detail=result.data)
        return result

    def failure(self, exc: StepFailed) -> ToolResult:
        logger.warning("%s stopped at %s: %s", self.name, exc.step, exc.error)
        return ToolResult.fail(exc.error, dict(self.created), failed_step=exc.step, **exc.detail)


def _record_id(record: Any, step: str) -> int:
    if isinstance(record, dict) and record.get("id") is not None:
        return record["id"]
    raise StepFailed(step, "VetCare API did not return the new record's id")


# ── New client ───────────────────────────────────────────────────────


class NewClientWorkflowArgs(ToolArgs):
    client: CreateClientArgs
    pet: PetDetails | None = None
    appointment: AppointmentDetails | None = Field(
        None, description="Only booked when a pet is registered in the same call",
    )
    use_existing_client: bool = Field(
        True, description="Reuse a client already registered under the same phone",
    )


@registry.tool(
    "new_client_workflow",
    "Register a client (or reuse the one with the same phone), then optionally "
    "a pet and a first appointment, in one call.",
    NewClientWorkflowArgs,
)
async def new_client_workflow(ctx: ToolContext, args: NewClientWorkflowArgs) -> ToolResult:
    flow = Workflow(ctx, "new_client_workflow")
    try:
        client_id = None
        if args.client.phone:
            found = await flow.step("find_client", "find_client_by_phone", {"phone": args.client.phone})
            if found.data["found"]:
                existing = found.data["client"]
                if not args.use_existing_client:
                    raise StepFailed(
                        "duplicate_client",
                        "Client already exists. Set use_existing_client to true to continue.",
                        existing_client=existing,
                    )
                flow.created["client"] = existing
                flow.created["existing_client"] = True
                client_id = _record_id(existing, "find_client")

        if client_id is None:
            created = await flow.step(
                "create_client", "create_client", args.client.model_dump(exclude_none=True),
            )
            flow.created["client"] = created.data["client"]
            flow.created["existing_client"] = False
            client_id = _record_id(created.data["client"], "create_client")

        if args.pet is not None:
            pet = await flow.step(
                "create_pet", "create_pet",
                {**args.pet.model_dump(exclude_none=True), "client_id": client_id},
            )
            flow.created["pet"] = pet.data["pet"]

            if args.appointment is not None:
                appointment = await flow.step(
                    "create_appointment", "create_appointment",
                    {
                        **args.appointment.model_dump(exclude_none=True),
                        "client_id": client_id,
                        "pet_id": _record_id(pet.data["pet"], "create_pet"),
                    },
                )
                flow.created["appointment"] = appointment.data["appointment"]
    except StepFailed as exc:
        return flow.failure(exc)

    message = (
        "Workflow complete (existing client reused)"
        if flow.created["existing_client"]
        else "Workflow complete (new client created)"
    )
    return ToolResult.ok({**flow.created, "message": message})


# ── Complete appointment ─────────────────────────────────────────────


class AppointmentWorkflowArgs(ToolArgs):
    client_id: RecordId
    pet_id: RecordId
    date_time: DateTime = Field(description="YYYY-MM-DD HH:MM:SS")
    service_description: str | None = Field(None, description="Service to look up, e.g. 'vacina'")
    vet_id: RecordId | None = None
    notes: str | None = None


@registry.tool(
    "complete_appointment_workflow",
    "Look up a service, check the veterinarian's slot and book the appointment in one call.",
    AppointmentWorkflowArgs,
)
async def complete_appointment_workflow(ctx: ToolContext, args: AppointmentWorkflowArgs) -> ToolResult:
    flow = Workflow(ctx, "complete_appointment_workflow")
    service: dict[str, Any] = {}
    try:
        if args.service_description:
            found = await flow.step(
                "find_service", "search_services", {"search_term": args.service_description},
            )
            if not found.data:
                raise StepFailed("find_service", "Service not found. Try another search term.")
            service = found.data[0]
            flow.created["service"] = service

        duration = service.get("duracao_minutos") or 30
        if args.vet_id is not None:
            slot = await flow.step(
                "check_slot", "check_slot_availability",
                {"date_time": args.date_time, "vet_id": args.vet_id, "duration_minutes": duration},
            )
            flow.created["availability"] = slot.data
            if not slot.data["available"]:
                raise StepFailed("check_slot", "Slot not available", availability=slot.data)

        booking = {
            "client_id": args.client_id,
            "pet_id": args.pet_id,
            "date_time": args.date_time,
            "service_id": service.get("id"),
            "vet_id": args.vet_id,
            "type": service.get("tipo") or "Consulta",
            "duration_minutes": duration,
            "price": service.get("preco"),
            "notes": args.notes,
        }
        appointment = await flow.step(
            "create_appointment", "create_appointment",
            {k: v for k, v in booking.items() if v is not None},
        )
        flow.created["appointment"] = appointment.data["appointment"]
    except StepFailed as exc:
        return flow.failure(exc)

    return ToolResult.ok({**flow.created, "message": "Appointment booked"})
