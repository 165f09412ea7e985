"""Tool registry: declarations, argument parsing and result shaping.

A tool is an async executor plus a pydantic model describing its
arguments.  Tool modules register themselves at import time:

>>> @registry.tool("get_pet", "Fetch one pet by id.", GetPetArgs)
... async def get_pet(ctx: ToolContext, args: GetPetArgs) -> ToolResult:
...     ...

Writes declare the cache entries they make stale with ``invalidates=``;
the registry applies those invalidations only after the executor
returned a successful result.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from vetcare_mcp.errors import ToolNotFoundError, ToolValidationError, UpstreamError
from vetcare_mcp.services.cache import CacheNamespaces, NegativeHit
from vetcare_mcp.services.vetcare_client import VetCareClient

logger = logging.getLogger(__name__)


class ToolArgs(BaseModel):
    """Base for every tool argument model: unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class NoArgs(ToolArgs):
    pass


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool invocation.

    ``success=False`` is a *soft* failure (slot taken, workflow step
    failed); hard failures are raised as classified exceptions instead.
    """

    success: bool
    data: Any = None
    error: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, **meta: Any) -> ToolResult:
        return cls(True, data, None, meta)

    @classmethod
    def fail(cls, error: str, data: Any = None, **meta: Any) -> ToolResult:
        return cls(False, data, error, meta)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        if self.meta:
            payload["meta"] = self.meta
        return payload


@dataclass(frozen=True)
class Invalidation:
    """A cache region a write makes stale.

    With ``key`` a single entry is dropped, with ``prefix`` every key that
    starts with it, and with neither the whole namespace.
    """

    namespace: str
    key: str | None = None
    prefix: str | None = None

    def apply(self, caches: CacheNamespaces) -> int:
        cache = caches[self.namespace]
        if self.key is not None:
            return int(cache.delete(self.key))
        return cache.delete_prefix(self.prefix or "")


@dataclass
class ToolContext:
    """Collaborators handed to every executor."""

    client: VetCareClient
    caches: CacheNamespaces


Executor = Callable[[ToolContext, Any], Awaitable[ToolResult]]
InvalidationRule = Callable[[Any], Iterable[Invalidation]]


def _validation_message(exc: ValidationError) -> str:
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        ctx_error = (err.get("ctx") or {}).get("error")
        text = str(ctx_error) if ctx_error is not None else err.get("msg", "invalid value")
        messages.append(f"{loc}: {text}" if loc else text)
    return "; ".join(messages)


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    args_model: type[ToolArgs]
    executor: Executor
    invalidates: InvalidationRule | None = None

    def input_schema(self) -> dict[str, Any]:
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return schema

    def to_mcp(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema(),
        }

    def parse(self, arguments: dict[str, Any] | None) -> ToolArgs:
        """Validate raw arguments into the typed model, or raise ToolValidationError."""
        try:
            return self.args_model.model_validate(arguments or {})
        except ValidationError as exc:
            raise ToolValidationError(_validation_message(exc)) from exc

    async def invoke(self, ctx: ToolContext, arguments: dict[str, Any] | None) -> ToolResult:
        args = self.parse(arguments)
        result = await self.executor(ctx, args)
        if result.success and self.invalidates is not None:
            for invalidation in self.invalidates(args):
                removed = invalidation.apply(ctx.caches)
                logger.debug("Invalidated %s (%d entries) after %s", invalidation, removed, self.name)
        return result


class ToolRegistry:
    """Name → :class:`ToolDefinition` map, fixed once the tool modules are imported."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        self._listing: list[dict[str, Any]] | None = None

    def tool(
        self,
        name: str,
        description: str,
        args_model: type[ToolArgs] = NoArgs,
        *,
        invalidates: InvalidationRule | None = None,
    ) -> Callable[[Executor], Executor]:
        def decorator(executor: Executor) -> Executor:
            if name in self._tools:
                raise ValueError(f"Tool already registered: {name}")
            self._tools[name] = ToolDefinition(name, description, args_model, executor, invalidates)
            self._listing = None
            return executor

        return decorator

    def get(self, name: str | None) -> ToolDefinition:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(name) from None

    async def invoke(self, ctx: ToolContext, name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        return await self.get(name).invoke(ctx, arguments)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def list_definitions(self) -> list[dict[str, Any]]:
        """MCP ``tools/list`` payload; built once and reused until a tool is added."""
        if self._listing is None:
            self._listing = [definition.to_mcp() for definition in self._tools.values()]
        return self._listing

    def is_consistent(self) -> bool:
        """Every listed definition has a callable executor and a buildable schema."""
        listed = {entry["name"] for entry in self.list_definitions()}
        if listed != set(self._tools):
            return False
        return all(callable(d.executor) for d in self._tools.values())


registry = ToolRegistry()


# ── Executor helpers ────────────────────────────────────────────────


async def read_through(
    ctx: ToolContext,
    namespace: str,
    key: str,
    fetch: Callable[[], Awaitable[ToolResult]],
    ttl: float | Callable[[ToolResult], float | None] | None = None,
) -> ToolResult:
    """Serve *key* from the namespace cache, or run *fetch* and cache a success."""
    cache = ctx.caches[namespace]
    cached = cache.get(key)
    if isinstance(cached, NegativeHit):
        raise UpstreamError(cached.error, status_code=cached.status_code, from_cache=True)
    if cached is not None:
        logger.debug("Cache hit %s:%s", namespace, key)
        return cached

    result = await fetch()
    if result.success:
        cache.set(key, result, ttl(result) if callable(ttl) else ttl)
    return result


def as_list(payload: Any) -> list[Any]:
    """Extract a record list from a bare list or a ``{"data": [...]}`` page."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    return []


def compact(payload: dict[str, Any]) -> dict[str, Any]:
    """Drop ``None`` values so optional fields are simply omitted upstream."""
    return {k: v for k, v in payload.items() if v is not None}
