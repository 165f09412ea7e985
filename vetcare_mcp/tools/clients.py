"""Client (tutor) lookup, search and registration tools."""

from __future__ import annotations

import logging

from pydantic import Field, model_validator

from vetcare_mcp import config
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
from vetcare_mcp.tools.validators import CPF, Email, PhoneNumber, RecordId, SearchTerm3

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 50


class FindClientByPhoneArgs(ToolArgs):
    phone: PhoneNumber = Field(description="Client phone or WhatsApp number, country code optional")


class SearchClientsArgs(ToolArgs):
    search_term: SearchTerm3 = Field(description="Name, phone, CPF or email (min. 3 characters)")


class CreateClientArgs(ToolArgs):
    name: str = Field(min_length=1, description="Full name")
    cpf: CPF | None = Field(None, description="CPF; a placeholder with valid check digits is generated when omitted")
    phone: PhoneNumber | None = None
    whatsapp: PhoneNumber | None = None
    email: Email | None = None
    address: str | None = None
    number: str | None = None
    complement: str | None = None
    district: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    notes: str | None = None
    active: bool = True


class UpdateClientArgs(ToolArgs):
    client_id: RecordId
    name: str | None = Field(None, min_length=1)
    phone: PhoneNumber | None = None
    whatsapp: PhoneNumber | None = None
    email: Email | None = None
    address: str | None = None
    city: str | None = None
    active: bool | None = None

    @model_validator(mode="after")
    def _require_change(self):
        if not self.model_dump(exclude={"client_id"}, exclude_none=True):
            raise ValueError("at least one field to update is required")
        return self


def _phone_matches(record: dict, digits: str) -> bool:
    return any(
        validators.digits_only(str(record.get(field) or "")) == digits
        for field in ("telefone", "whatsapp")
    )


@registry.tool(
    "find_client_by_phone",
    "Find a client by phone or WhatsApp number. Use this first when a client gets in touch.",
    FindClientByPhoneArgs,
)
async def find_client_by_phone(ctx: ToolContext, args: FindClientByPhoneArgs) -> ToolResult:
    async def fetch() -> ToolResult:
        records = as_list(await ctx.client.get("/clientes", {"busca": args.phone}))
        match = next((r for r in records if _phone_matches(r, args.phone)), None)
        if match is None:
            return ToolResult.ok({"found": False, "message": "Client not found"})
        return ToolResult.ok({"found": True, "client": match})

    return await read_through(
        ctx, "clients", f"client_phone:{args.phone}", fetch,
        ttl=lambda r: config.CACHE_TTL_MEDIUM if r.data["found"] else config.CACHE_TTL_SHORT,
    )


@registry.tool(
    "search_clients",
    "Search clients by name, phone, CPF or email. A term of at least 3 characters "
    f"is required and at most {MAX_SEARCH_RESULTS} clients are returned.",
    SearchClientsArgs,
)
async def search_clients(ctx: ToolContext, args: SearchClientsArgs) -> ToolResult:
    async def fetch() -> ToolResult:
        records = as_list(await ctx.client.get("/clientes", {"busca": args.search_term}))
        return ToolResult.ok(
            records[:MAX_SEARCH_RESULTS],
            total=min(len(records), MAX_SEARCH_RESULTS),
            total_found=len(records),
            limited=len(records) > MAX_SEARCH_RESULTS,
        )

    return await read_through(
        ctx, "clients", f"client_search:{args.search_term.lower()}", fetch,
    )


@registry.tool(
    "create_client",
    "Register a new client. Check with find_client_by_phone first to avoid duplicates.",
    CreateClientArgs,
    invalidates=lambda args: [
        Invalidation("clients", prefix="client_phone:"),
        Invalidation("clients", prefix="client_search:"),
    ],
)
async def create_client(ctx: ToolContext, args: CreateClientArgs) -> ToolResult:
    cpf = args.cpf
    if cpf is None:
        cpf = validators.generate_cpf()
        logger.debug("Generated placeholder CPF %s for %s", cpf, args.name)

    payload = {
        "nome": args.name,
        "cpf": cpf,
        "telefone": args.phone or "",
        "email": args.email or "",
        "whatsapp": args.whatsapp or args.phone or "",
        "endereco": args.address or "",
        "numero": args.number or "",
        "complemento": args.complement or "",
        "bairro": args.district or "",
        "cidade": args.city or "",
        "estado": args.state or "",
        "cep": validators.digits_only(args.zip_code or ""),
        "observacoes": args.notes or "",
        "ativo": 1 if args.active else 0,
    }
    created = await ctx.client.post("/clientes", payload)
    logger.info("Client created: %s", args.name)
    return ToolResult.ok({"client": created, "message": "Client created"})


@registry.tool(
    "update_client",
    "Update a client's contact details. Only the fields given are changed.",
    UpdateClientArgs,
    invalidates=lambda args: [Invalidation("clients")],
)
async def update_client(ctx: ToolContext, args: UpdateClientArgs) -> ToolResult:
    payload = compact({
        "nome": args.name,
        "telefone": args.phone,
        "whatsapp": args.whatsapp,
        "email": args.email,
        "endereco": args.address,
        "cidade": args.city,
        "ativo": None if args.active is None else int(args.active),
    })
    updated = await ctx.client.put(f"/clientes/{args.client_id}", payload)
    return ToolResult.ok({"client": updated, "message": "Client updated"})
