"""Shared test fixtures for the VetCare MCP test suite."""

from __future__ import annotations

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py picks up safe defaults.
    """
    os.environ.setdefault("VETCARE_API_URL", "http://vetcare.test/api")
    os.environ.setdefault("VETCARE_API_TOKEN", "test-vetcare-token")
    os.environ.setdefault("CLOUDWATCH_ENABLED", "false")
    os.environ.setdefault("RETRY_DELAY_SECONDS", "0")


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_response(data, status_code: int = 200) -> MagicMock:
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = data
    mock.text = str(data)
    mock.content = b"" if data is None else b"{}"
    return mock


@pytest.fixture
def mock_response():
    """Factory fixture for creating mock VetCare API responses."""
    return make_response


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def caches(clock):
    from vetcare_mcp.services.cache import CacheNamespaces

    return CacheNamespaces.build(clock=clock, enabled=True, negative_enabled=True)


@pytest.fixture
def vetcare(caches):
    from vetcare_mcp.services.vetcare_client import VetCareClient

    return VetCareClient(
        base_url="http://vetcare.test/api",
        token="test-token",
        failures=caches["upstream"],
        retry_delay=0,
    )


@pytest.fixture
def ctx(vetcare, caches):
    import vetcare_mcp.tools  # noqa: F401  (registers every tool)
    from vetcare_mcp.tools.registry import ToolContext

    return ToolContext(client=vetcare, caches=caches)


@pytest.fixture
def upstream(vetcare):
    """Route upstream calls by ``(method, path)`` to canned responses.

    Values may be a response, an exception instance, or a list consumed
    one item per call.  Unrouted calls return 404.  The patched
    ``request`` mock is returned so tests can inspect ``call_args_list``.
    """
    routes: dict[tuple[str, str], object] = {}

    async def _request(method, url, **kwargs):
        outcome = routes.get((method, url), make_response({"error": "not found"}, 404))
        if isinstance(outcome, list):
            outcome = outcome.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    mock = AsyncMock(side_effect=_request)
    with patch.object(vetcare._client, "request", mock):
        mock.routes = routes
        yield mock
