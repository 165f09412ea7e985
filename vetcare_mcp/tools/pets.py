"""Pet registry tools."""

from __future__ import annotations

import logging

from pydantic import Field

from vetcare_mcp.tools.registry import (
    Invalidation,
    ToolArgs,
    ToolContext,
    ToolResult,
    as_list,
    read_through,
    registry,
)
from vetcare_mcp.tools.validators import ISODate, RecordId, Sex

logger = logging.getLogger(__name__)


class ClientPetsArgs(ToolArgs):
    client_id: RecordId


class GetPetArgs(ToolArgs):
    pet_id: RecordId


class PetDetails(ToolArgs):
    name: str = Field(min_length=1)
    species: str = Field(min_length=1, description="e.g. Cão, Gato")
    sex: Sex = Field(description="M or F")
    breed: str | None = None
    neutered: bool = False
    birth_date: ISODate | None = Field(None, description="YYYY-MM-DD")
    weight: float | None = Field(None, gt=0, description="Weight in kg")
    coat: str | None = None
    microchip: str | None = None
    allergies: str | None = None
    notes: str | None = None
    active: bool = True


class CreatePetArgs(PetDetails):
    client_id: RecordId


@registry.tool(
    "list_client_pets",
    "List every pet registered to a client.",
    ClientPetsArgs,
)
async def list_client_pets(ctx: ToolContext, args: ClientPetsArgs) -> ToolResult:
    async def fetch() -> ToolResult:
        pets = as_list(await ctx.client.get(f"/clientes/{args.client_id}/pets"))
        return ToolResult.ok(pets, total=len(pets))

    return await read_through(ctx, "pets", f"client_pets:{args.client_id}", fetch)


@registry.tool("get_pet", "Fetch one pet by id.", GetPetArgs)
async def get_pet(ctx: ToolContext, args: GetPetArgs) -> ToolResult:
    async def fetch() -> ToolResult:
        return ToolResult.ok({"found": True, "pet": await ctx.client.get(f"/pets/{args.pet_id}")})

    return await read_through(ctx, "pets", f"pet:{args.pet_id}", fetch)


@registry.tool(
    "create_pet",
    "Register a pet for an existing client.",
    CreatePetArgs,
    invalidates=lambda args: [Invalidation("pets", key=f"client_pets:{args.client_id}")],
)
async def create_pet(ctx: ToolContext, args: CreatePetArgs) -> ToolResult:
    payload = {
        "cliente_id": args.client_id,
        "nome": args.name,
        "especie": args.species,
        "raca": args.breed or "",
        "sexo": args.sex,
        "castrado": args.neutered,
        "data_nascimento": args.birth_date,
        "peso": args.weight,
        "pelagem": args.coat or "",
        "microchip": args.microchip or "",
        "alergias": args.allergies or "",
        "observacoes": args.notes or "",
        "ativo": 1 if args.active else 0,
    }
    created = await ctx.client.post("/pets", payload)
    if isinstance(created, dict) and isinstance(created.get("pet"), dict):
        created = created["pet"]
    logger.info("Pet created for client %s: %s", args.client_id, args.name)
    return ToolResult.ok({"pet": created, "message": "Pet registered"})
