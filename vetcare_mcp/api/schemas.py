"""Pydantic schemas for the operational endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from vetcare_mcp.mcp import protocol


class UpstreamHealth(BaseModel):
    status: Literal["healthy", "degraded", "error"]
    base_url: str


class RegistryHealth(BaseModel):
    defined: int = Field(..., description="Tools listed by tools/list")
    implemented: int = Field(..., description="Tools with a registered executor")
    match: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"]
    service: str = protocol.SERVER_NAME
    version: str = protocol.SERVER_VERSION
    api: UpstreamHealth
    tools: RegistryHealth
    lifecycle: str
    features: list[str]
    timestamp: str


class ServerInfo(BaseModel):
    name: str = protocol.SERVER_NAME
    version: str = protocol.SERVER_VERSION
    description: str = "VetCare MCP server: veterinary clinic management tools"


class WellKnownResponse(BaseModel):
    """``/.well-known/mcp`` discovery document."""

    protocolVersion: str = protocol.PROTOCOL_VERSION  # noqa: N815
    serverInfo: ServerInfo = Field(default_factory=ServerInfo)  # noqa: N815
    capabilities: dict = Field(default_factory=lambda: {"tools": {"listChanged": False}})
