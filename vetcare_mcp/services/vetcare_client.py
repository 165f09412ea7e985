"""Async HTTP client for the VetCare REST API with retry logic, timeout
handling and negative caching of failed calls.

The VetCare API (clients, pets, appointments, vaccinations, services,
receivables, cash register, sales, dashboards) is an external contract:
paths and payload field names are used exactly as that service defines them.

Positive caching is deliberately *not* done here: each tool decides what
to cache, for how long, and which writes invalidate it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from vetcare_mcp import config
from vetcare_mcp.errors import (
    UpstreamClientError,
    UpstreamError,
    UpstreamServerError,
    UpstreamTimeoutError,
    UpstreamTransportError,
)
from vetcare_mcp.services.cache import NegativeHit, TTLCache

logger = logging.getLogger(__name__)

_FAILURE_KINDS: dict[str, type[UpstreamError]] = {
    cls.__name__: cls
    for cls in (
        UpstreamClientError,
        UpstreamServerError,
        UpstreamTimeoutError,
        UpstreamTransportError,
    )
}


@dataclass
class RetryState:
    """Progress of one logical request through its attempts.

    The delay before attempt ``n + 1`` is ``base_delay * n``.
    """

    max_attempts: int
    base_delay: float
    attempt: int = 0
    last_error: UpstreamError | None = None

    def start_attempt(self) -> int:
        self.attempt += 1
        return self.attempt

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    @property
    def next_delay(self) -> float:
        return self.base_delay * self.attempt


class VetCareClient:
    """Thin async wrapper around the VetCare API.

    **Failure contract**

    * 4xx: raised as :class:`UpstreamClientError` after one attempt and
      cached negatively; retrying a malformed request cannot fix it.
    * 5xx, timeouts, connection errors: retried up to ``max_attempts``
      with a linearly growing delay, then cached negatively and raised as
      :class:`UpstreamServerError`, :class:`UpstreamTimeoutError` or
      :class:`UpstreamTransportError`.
    * While a negative entry is live the same request fails immediately
      with ``from_cache=True`` and never reaches the network.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        *,
        failures: TTLCache | None = None,
        timeout: float = config.API_TIMEOUT_SECONDS,
        max_attempts: int = config.RETRY_ATTEMPTS,
        retry_delay: float = config.RETRY_DELAY_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = (base_url or config.VETCARE_API_URL).rstrip("/")
        token = token if token is not None else config.VETCARE_API_TOKEN
        headers = {
            "Accept": "application/json; charset=UTF-8",
            "Content-Type": "application/json; charset=UTF-8",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        # Negative cache for failed calls (injectable for tests)
        self._failures = failures if failures is not None else TTLCache(
            config.CACHE_TTL_NEGATIVE, name="upstream",
        )
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self._stats = {"requests": 0, "attempts": 0, "errors": 0, "fast_failures": 0}

    @property
    def base_url(self) -> str:
        return self._base_url

    # ── Internal helpers ─────────────────────────────────────────────

    @staticmethod
    def _failure_key(
        method: str,
        endpoint: str,
        params: dict[str, Any] | None,
        body: Any,
    ) -> str:
        """Identify a request by method, endpoint, query and body."""
        parts = [method, endpoint]
        if params:
            parts.append(json.dumps(params, sort_keys=True, default=str))
        if body is not None:
            parts.append(json.dumps(body, sort_keys=True, default=str))
        return "api:" + ":".join(parts)

    @staticmethod
    def _parse(response: httpx.Response, endpoint: str) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamServerError(
                f"Invalid JSON from VetCare API ({endpoint})",
                status_code=response.status_code,
                endpoint=endpoint,
            ) from exc

    def _classify(self, response: httpx.Response, endpoint: str) -> UpstreamError | None:
        status = response.status_code
        if status < 400:
            return None
        message = f"API Error {status}: {response.text}"
        cls = UpstreamServerError if status >= 500 else UpstreamClientError
        return cls(message, status_code=status, endpoint=endpoint)

    def _remember_failure(self, key: str, error: UpstreamError) -> None:
        self._failures.set_negative(
            key, str(error), kind=type(error).__name__, status_code=error.status_code,
        )

    # ── Public API ───────────────────────────────────────────────────

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        """Execute a request with retries and return the parsed JSON payload."""
        method = method.upper()
        self._stats["requests"] += 1
        key = self._failure_key(method, endpoint, params, json_body)

        cached = self._failures.get(key)
        if isinstance(cached, NegativeHit):
            self._stats["fast_failures"] += 1
            logger.debug("Negative cache hit: %s %s", method, endpoint)
            raise _FAILURE_KINDS.get(cached.kind, UpstreamError)(
                cached.error,
                status_code=cached.status_code,
                endpoint=endpoint,
                from_cache=True,
            )

        state = RetryState(self._max_attempts, self._retry_delay)
        while True:
            attempt = state.start_attempt()
            self._stats["attempts"] += 1
            logger.debug(
                "VetCare %s %s (attempt %d/%d)", method, endpoint, attempt, state.max_attempts,
            )
            try:
                response = await self._client.request(
                    method, endpoint, params=params, json=json_body,
                )
            except httpx.TimeoutException:
                error: UpstreamError = UpstreamTimeoutError(
                    "VetCare API timeout", endpoint=endpoint,
                )
            except httpx.TransportError as exc:
                error = UpstreamTransportError(
                    f"VetCare API unreachable: {type(exc).__name__}", endpoint=endpoint,
                )
            else:
                error = self._classify(response, endpoint)
                if error is None:
                    return self._parse(response, endpoint)
                if isinstance(error, UpstreamClientError):
                    # 4xx errors are not retried
                    self._stats["errors"] += 1
                    self._remember_failure(key, error)
                    logger.warning("VetCare %s %s rejected: %s", method, endpoint, error)
                    raise error

            state.last_error = error
            if state.exhausted:
                break

            delay = state.next_delay
            logger.warning(
                "VetCare API attempt %d/%d failed (%s). Retrying in %.1fs…",
                attempt, state.max_attempts, type(error).__name__, delay,
            )
            await asyncio.sleep(delay)

        self._stats["errors"] += 1
        self._remember_failure(key, state.last_error)
        logger.error(
            "VetCare %s %s failed after %d attempts: %s",
            method, endpoint, state.attempt, state.last_error,
        )
        raise state.last_error

    async def get(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", endpoint, params=params)

    async def post(self, endpoint: str, body: Any = None) -> Any:
        return await self.request("POST", endpoint, json_body=body)

    async def put(self, endpoint: str, body: Any = None) -> Any:
        return await self.request("PUT", endpoint, json_body=body)

    async def ping(self) -> str:
        """Probe ``GET /health`` once, bypassing retries and the negative cache.

        Returns ``"healthy"``, ``"degraded"`` (non-2xx) or ``"error"``
        (no response at all).
        """
        try:
            response = await self._client.get("/health")
        except httpx.HTTPError as exc:
            logger.warning("VetCare health probe failed: %s", type(exc).__name__)
            return "error"
        return "healthy" if response.status_code < 400 else "degraded"

    def stats(self) -> dict[str, Any]:
        requests = self._stats["requests"]
        success_rate = (
            round((requests - self._stats["errors"] - self._stats["fast_failures"]) / requests * 100, 2)
            if requests else 100.0
        )
        return {**self._stats, "success_rate": success_rate}

    async def aclose(self) -> None:
        await self._client.aclose()
