"""Tests for the HTTP integration clients."""

import httpx
import pytest

from app.jobs.types import IntegrationType
from app.services.integrations.clients import (
    HttpIntegrationClient,
    IntegrationClients,
    IntegrationNotConfiguredError,
)


def _client(handler) -> HttpIntegrationClient:
    return HttpIntegrationClient(
        IntegrationType.STORAGE,
        "https://storage.internal/",
        transport=httpx.MockTransport(handler),
    )


class TestHttpIntegrationClient:
    @pytest.mark.asyncio
    async def test_send_decodes_json(self):
        def handler(request):
            assert request.url.path == "/objects"
            assert request.headers["accept"] == "application/json"
            return httpx.Response(201, json={"key": "a.txt"})

        client = _client(handler)
        response = await client.send(
            "put", "objects", body={"name": "a.txt"}, headers={"accept": "application/json"}
        )

        assert response == {"status_code": 201, "data": {"key": "a.txt"}}
        await client.aclose()

    @pytest.mark.asyncio
    async def test_send_empty_and_text_bodies(self):
        responses = iter([httpx.Response(204), httpx.Response(200, text="pong")])
        client = _client(lambda request: next(responses))

        assert await client.send("DELETE", "/objects/a") == {
            "status_code": 204,
            "data": None,
        }
        assert await client.send("GET", "/ping") == {
            "status_code": 200,
            "data": "pong",
        }
        await client.aclose()

    @pytest.mark.asyncio
    async def test_send_raises_for_error_status(self):
        client = _client(lambda request: httpx.Response(503))

        with pytest.raises(httpx.HTTPStatusError):
            await client.send("GET", "/objects")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_ping(self):
        healthy = _client(lambda request: httpx.Response(200))
        unhealthy = _client(lambda request: httpx.Response(500))

        def unreachable(request):
            raise httpx.ConnectError("refused", request=request)

        down = _client(unreachable)

        assert await healthy.ping() is True
        assert await unhealthy.ping() is False
        assert await down.ping() is False

        for client in (healthy, unhealthy, down):
            await client.aclose()


class TestIntegrationClients:
    def test_from_base_urls_skips_blank(self):
        clients = IntegrationClients.from_base_urls(
            {"email": "https://mail.internal", "pdf": ""}
        )

        assert IntegrationType.EMAIL in clients
        assert IntegrationType.PDF not in clients
        assert clients.get(IntegrationType.EMAIL).base_url == "https://mail.internal"

    def test_get_unconfigured(self):
        clients = IntegrationClients()

        with pytest.raises(IntegrationNotConfiguredError, match="ai"):
            clients.get(IntegrationType.AI)
