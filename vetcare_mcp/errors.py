"""Classified error hierarchy shared by every layer of the server.

Components raise these; only :mod:`vetcare_mcp.mcp.protocol` turns them
into JSON-RPC error codes.
"""

from __future__ import annotations


class VetCareError(Exception):
    """Base exception for the VetCare MCP server."""


class ConfigurationError(VetCareError):
    """Raised when the tool registry or settings are inconsistent at startup."""


class ToolValidationError(VetCareError, ValueError):
    """Caller-supplied arguments failed a schema, format or business rule.

    Never retried and never cached.  Subclassing ``ValueError`` lets the
    validators run inside pydantic field validators unchanged.
    """


class ToolNotFoundError(VetCareError):
    """Raised when ``tools/call`` names a tool that is not registered."""

    def __init__(self, name: str | None):
        self.name = name
        super().__init__(f"Tool not found: {name}")


class RateLimitExceeded(VetCareError):
    """Raised when a caller exceeded its admission ceiling."""

    def __init__(self, identifier: str, retry_after: int):
        self.identifier = identifier
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded. Please wait {retry_after} seconds "
            "before making more requests."
        )


class UpstreamError(VetCareError):
    """Raised when the VetCare API call failed (or is known to be failing)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str | None = None,
        from_cache: bool = False,
    ):
        self.status_code = status_code
        self.endpoint = endpoint
        self.from_cache = from_cache
        super().__init__(message)


class UpstreamClientError(UpstreamError):
    """4xx response: the request itself is wrong, retrying cannot help."""


class UpstreamServerError(UpstreamError):
    """5xx response on the final attempt."""


class UpstreamTimeoutError(UpstreamError):
    """The final attempt exceeded the request timeout."""


class UpstreamTransportError(UpstreamError):
    """Connection-level failure (DNS, refused, reset) on the final attempt."""
