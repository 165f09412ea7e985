"""Tests for the VetCare API client: retries, error classification and
negative caching.  The HTTP layer is mocked; no network calls are made."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from vetcare_mcp.errors import (
    UpstreamClientError,
    UpstreamServerError,
    UpstreamTimeoutError,
    UpstreamTransportError,
)


class TestSuccessfulRequests:
    async def test_returns_parsed_payload(self, vetcare, upstream, mock_response):
        upstream.routes[("GET", "/clientes")] = mock_response([{"id": 1, "nome": "Ana"}])

        data = await vetcare.get("/clientes", {"busca": "ana"})

        assert data == [{"id": 1, "nome": "Ana"}]
        upstream.assert_awaited_once_with("GET", "/clientes", params={"busca": "ana"}, json=None)

    async def test_empty_body_returns_none(self, vetcare, upstream, mock_response):
        upstream.routes[("PUT", "/agendamentos/5/status")] = mock_response(None, 204)
        assert await vetcare.put("/agendamentos/5/status", {"status": "Cancelado"}) is None

    async def test_post_sends_json_body(self, vetcare, upstream, mock_response):
        upstream.routes[("POST", "/pets")] = mock_response({"id": 9})
        await vetcare.post("/pets", {"nome": "Rex"})
        assert upstream.call_args.kwargs["json"] == {"nome": "Rex"}


class TestClientErrors:
    async def test_4xx_is_attempted_once_and_negatively_cached(self, vetcare, upstream, mock_response):
        upstream.routes[("GET", "/pets/404")] = mock_response({"error": "not found"}, 404)

        with pytest.raises(UpstreamClientError) as exc_info:
            await vetcare.get("/pets/404")
        assert exc_info.value.status_code == 404
        assert upstream.await_count == 1

        # identical request fails fast from the negative cache
        with pytest.raises(UpstreamClientError) as exc_info:
            await vetcare.get("/pets/404")
        assert exc_info.value.from_cache is True
        assert exc_info.value.status_code == 404
        assert "404" in str(exc_info.value)
        assert upstream.await_count == 1
        assert vetcare.stats()["fast_failures"] == 1

    async def test_negative_entry_expires(self, vetcare, upstream, mock_response, clock):
        upstream.routes[("GET", "/pets/1")] = [
            mock_response({"error": "not found"}, 404),
            mock_response({"id": 1}),
        ]
        with pytest.raises(UpstreamClientError):
            await vetcare.get("/pets/1")

        clock.advance(31)
        assert await vetcare.get("/pets/1") == {"id": 1}

    async def test_failures_are_keyed_by_params(self, vetcare, upstream, mock_response):
        upstream.routes[("GET", "/clientes")] = [
            mock_response({"error": "bad"}, 400),
            mock_response([]),
        ]
        with pytest.raises(UpstreamClientError):
            await vetcare.get("/clientes", {"busca": "x"})
        assert await vetcare.get("/clientes", {"busca": "y"}) == []


class TestRetries:
    async def test_5xx_is_retried_up_to_max_attempts(self, vetcare, upstream, mock_response):
        upstream.routes[("GET", "/servicos")] = mock_response({"error": "down"}, 503)

        with pytest.raises(UpstreamServerError) as exc_info:
            await vetcare.get("/servicos")

        assert exc_info.value.status_code == 503
        assert upstream.await_count == 3
        assert vetcare.stats()["attempts"] == 3

    async def test_recovers_on_third_attempt(self, vetcare, upstream, mock_response):
        upstream.routes[("GET", "/servicos")] = [
            mock_response({"error": "down"}, 500),
            mock_response({"error": "down"}, 500),
            mock_response([{"id": 1}]),
        ]

        assert await vetcare.get("/servicos") == [{"id": 1}]
        assert upstream.await_count == 3

    async def test_retry_delay_grows_linearly(self, caches, mock_response):
        from vetcare_mcp.services.vetcare_client import VetCareClient

        client = VetCareClient(
            "http://vetcare.test/api", "t", failures=caches["upstream"], retry_delay=2,
        )
        failing = AsyncMock(return_value=mock_response({"error": "down"}, 500))
        with patch.object(client._client, "request", failing), \
             patch("vetcare_mcp.services.vetcare_client.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(UpstreamServerError):
                await client.get("/servicos")

        assert [c.args[0] for c in sleep.await_args_list] == [2, 4]

    async def test_timeout_maps_to_timeout_error(self, vetcare, upstream):
        upstream.routes[("GET", "/agendamentos")] = httpx.ReadTimeout("slow")

        with pytest.raises(UpstreamTimeoutError):
            await vetcare.get("/agendamentos")
        assert upstream.await_count == 3

    async def test_cached_timeout_is_replayed_as_timeout_error(self, vetcare, upstream):
        upstream.routes[("GET", "/agendamentos")] = httpx.ReadTimeout("slow")
        with pytest.raises(UpstreamTimeoutError):
            await vetcare.get("/agendamentos")

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await vetcare.get("/agendamentos")

        assert exc_info.value.from_cache is True
        assert exc_info.value.endpoint == "/agendamentos"
        assert upstream.await_count == 3
        assert vetcare.stats()["fast_failures"] == 1

    async def test_cached_5xx_keeps_class_and_status(self, vetcare, upstream, mock_response):
        upstream.routes[("GET", "/servicos")] = mock_response({"error": "down"}, 503)
        with pytest.raises(UpstreamServerError):
            await vetcare.get("/servicos")

        with pytest.raises(UpstreamServerError) as exc_info:
            await vetcare.get("/servicos")

        assert exc_info.value.status_code == 503
        assert exc_info.value.from_cache is True

    async def test_connection_error_maps_to_transport_error(self, vetcare, upstream):
        upstream.routes[("GET", "/agendamentos")] = httpx.ConnectError("refused")

        with pytest.raises(UpstreamTransportError):
            await vetcare.get("/agendamentos")

    async def test_invalid_json_is_a_server_error(self, vetcare, upstream, mock_response):
        response = mock_response({"ok": True})
        response.json.side_effect = ValueError("not json")
        upstream.routes[("GET", "/dashboard/indicadores")] = response

        with pytest.raises(UpstreamServerError, match="Invalid JSON"):
            await vetcare.get("/dashboard/indicadores")


class TestPing:
    @pytest.mark.parametrize(
        ("status_code", "expected"),
        [(200, "healthy"), (503, "degraded")],
    )
    async def test_status_mapping(self, vetcare, mock_response, status_code, expected):
        with patch.object(vetcare._client, "get", AsyncMock(return_value=mock_response({}, status_code))):
            assert await vetcare.ping() == expected

    async def test_unreachable(self, vetcare):
        with patch.object(vetcare._client, "get", AsyncMock(side_effect=httpx.ConnectError("x"))):
            assert await vetcare.ping() == "error"


class TestConstruction:
    def test_sends_bearer_token(self, vetcare):
        assert vetcare._client.headers["Authorization"] == "Bearer test-token"
        assert vetcare.base_url == "http://vetcare.test/api"

    def test_omits_authorization_without_token(self, caches):
        from vetcare_mcp.services.vetcare_client import VetCareClient

        client = VetCareClient("http://vetcare.test/api/", "", failures=caches["upstream"])
        assert "Authorization" not in client._client.headers
        assert client.base_url == "http://vetcare.test/api"
