"""
ServiceClient - Shared async HTTP client for provider integrations.

Owns one httpx.AsyncClient and a table of registered services (base URL,
default headers, timeout). Transport and HTTP failures are translated into
service layer errors so the retry policy can classify them.
"""

from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from booking_engine.services.errors import (
    ProviderError,
    RequestTimeoutError,
    TransientError,
)


@dataclass
class ServiceConfig:
    """Configuration for a specific service."""

    service_id: str
    base_url: str
    timeout: float = 30.0
    headers: dict[str, str] = field(default_factory=dict)


class ServiceClient:
    """
    HTTP client shared by all provider integrations.

    Usage:
        client = ServiceClient()
        client.register_service(ServiceConfig(
            service_id="hubspot",
            base_url="https://api.hubapi.com",
            headers={"Authorization": f"Bearer {token}"},
        ))
        data = await client.request("hubspot", "GET", "/crm/v3/objects/contacts")
    """

    def __init__(
        self,
        default_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._default_timeout = default_timeout
        self._transport = transport
        self._services: dict[str, ServiceConfig] = {}

        # HTTP client (lazy initialization)
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._default_timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._http_client

    def register_service(self, config: ServiceConfig) -> None:
        """Register a service configuration."""
        self._services[config.service_id] = config
        logger.debug(f"Registered service: {config.service_id}")

    def get_service_config(self, service_id: str) -> ServiceConfig | None:
        """Get configuration for a service."""
        return self._services.get(service_id)

    async def request(
        self,
        service_id: str,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        Make an HTTP request to a registered service.

        Returns:
            Decoded JSON body, or None for empty responses

        Raises:
            RequestTimeoutError: If request times out
            TransientError: On connection-level failures
            ProviderError: On HTTP error responses (5xx/429 marked retryable)
        """
        config = self._services.get(service_id)
        if config is None:
            raise ProviderError(
                f"Service '{service_id}' is not registered", service_id=service_id
            )

        req_headers = dict(config.headers)
        if headers:
            req_headers.update(headers)
        req_timeout = timeout or config.timeout

        client = await self._get_http_client()
        url = f"{config.base_url.rstrip('/')}/{path.lstrip('/')}"

        try:
            response = await client.request(
                method=method,
                url=url,
                params=params,
                headers=req_headers,
                json=json_data,
                timeout=req_timeout,
            )
            response.raise_for_status()

        except httpx.TimeoutException as e:
            raise RequestTimeoutError(service_id, req_timeout) from e

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProviderError(
                f"HTTP {status}: {e.response.text[:200]}",
                service_id=service_id,
                status_code=status,
                retryable=status == 429 or status >= 500,
            ) from e

        except httpx.ConnectError as e:
            raise TransientError(str(e) or "connection refused", "ECONNREFUSED", service_id) from e

        except httpx.RequestError as e:
            raise TransientError(str(e) or "network error", "ECONNRESET", service_id) from e

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("ServiceClient closed")

    async def __aenter__(self) -> "ServiceClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
