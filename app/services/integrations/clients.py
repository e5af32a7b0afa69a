"""HTTP clients for external integrations.

Each integration is reached through a generic JSON-over-HTTP client rooted at
a configured base URL. Concrete vendor SDKs stay outside this service.
"""

from collections.abc import Mapping
from typing import Any, Optional

import httpx
import structlog

from app.jobs.types import IntegrationType

logger = structlog.get_logger(__name__)


class IntegrationNotConfiguredError(Exception):
    """Raised when no base URL is configured for an integration. Terminal."""

    retryable = False

    def __init__(self, integration: IntegrationType):
        self.integration = integration
        super().__init__(f"Integration {integration.value} is not configured")


class HttpIntegrationClient:
    """Async JSON client for one integration."""

    def __init__(
        self,
        integration: IntegrationType,
        base_url: str,
        timeout: float = 10.0,
        health_path: str = "/health",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.integration = integration
        self.base_url = base_url.rstrip("/")
        self.health_path = health_path
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )
        self._last_good: dict[str, dict[str, Any]] = {}

    async def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        query: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> dict[str, Any]:
        """Send a request and return the decoded response.

        Raises:
            httpx.HTTPStatusError: Response status >= 400
            httpx.TransportError: Connection or timeout failure
        """
        path = "/" + path.lstrip("/")
        response = await self._client.request(
            method.upper(),
            path,
            json=body,
            params=dict(query) if query else None,
            headers=dict(headers) if headers else None,
        )
        logger.debug(
            "integration_request",
            integration=self.integration.value,
            method=method.upper(),
            path=path,
            status_code=response.status_code,
        )
        response.raise_for_status()

        if not response.content:
            return {"status_code": response.status_code, "data": None}
        try:
            data = response.json()
        except ValueError:
            data = response.text
        result = {"status_code": response.status_code, "data": data}
        if method.upper() == "GET":
            self._last_good[path] = result
        return result

    def cached_response(self, path: str) -> Optional[dict[str, Any]]:
        """Last successful GET response for path, used as a fallback."""
        return self._last_good.get("/" + path.lstrip("/"))

    async def ping(self) -> bool:
        """Health probe: True when the health endpoint answers < 400."""
        try:
            response = await self._client.get(self.health_path)
        except httpx.HTTPError as e:
            logger.debug(
                "integration_ping_failed",
                integration=self.integration.value,
                error=str(e),
            )
            return False
        return response.status_code < 400

    async def aclose(self) -> None:
        await self._client.aclose()


class IntegrationClients:
    """Registry of configured integration clients."""

    def __init__(
        self,
        clients: Optional[dict[IntegrationType, HttpIntegrationClient]] = None,
    ):
        self._clients: dict[IntegrationType, HttpIntegrationClient] = dict(
            clients or {}
        )

    @classmethod
    def from_base_urls(
        cls,
        base_urls: Mapping[str, str],
        timeout: float = 10.0,
        health_path: str = "/health",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "IntegrationClients":
        """Build clients from an {integration: base_url} mapping."""
        clients = {}
        for name, base_url in base_urls.items():
            if not base_url:
                continue
            integration = IntegrationType(name)
            clients[integration] = HttpIntegrationClient(
                integration,
                base_url,
                timeout=timeout,
                health_path=health_path,
                transport=transport,
            )
        if clients:
            logger.info(
                "integration_clients_configured",
                integrations=sorted(i.value for i in clients),
            )
        return cls(clients)

    def get(self, integration: IntegrationType) -> HttpIntegrationClient:
        client = self._clients.get(integration)
        if client is None:
            raise IntegrationNotConfiguredError(integration)
        return client

    def __contains__(self, integration: object) -> bool:
        return integration in self._clients

    def items(self):
        return self._clients.items()

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
