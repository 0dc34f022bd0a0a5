"""
ServiceClient - async HTTP client for third-party providers.

Every call carries a hard timeout. Timeouts, transport errors, non-2xx
statuses and undecodable bodies are all mapped to UpstreamUnavailable, so
callers never see a provider-specific error shape.
"""

from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from relay.services.errors import UpstreamUnavailable


@dataclass
class ServiceConfig:
    """Configuration for a specific upstream service."""

    service_id: str
    base_url: str
    timeout: float = 5.0
    headers: dict[str, str] = field(default_factory=dict)


class ServiceClient:
    """
    Usage:
        client = ServiceClient(default_timeout=5.0)
        client.register_service(ServiceConfig("github", "https://api.github.com"))

        data = await client.get_json("github", "/users/octocat")
    """

    def __init__(
        self,
        default_timeout: float = 5.0,
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

    async def get_json(
        self,
        service_id: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """
        GET a JSON document from a provider.

        Args:
            service_id: Identifier of the provider (used in errors and logs)
            url: Absolute URL, or a path relative to the service's base_url
            params: Query parameters
            headers: Additional headers
            timeout: Override request timeout

        Returns:
            Decoded JSON body

        Raises:
            UpstreamUnavailable: On timeout, transport error, HTTP error status
                or an undecodable body
        """
        config = self._services.get(service_id)
        req_timeout = timeout or (config.timeout if config else self._default_timeout)

        req_headers = {"Accept": "application/json"}
        if config:
            req_headers.update(config.headers)
            if not url.startswith(("http://", "https://")):
                url = f"{config.base_url.rstrip('/')}/{url.lstrip('/')}"
        if headers:
            req_headers.update(headers)

        client = await self._get_http_client()
        try:
            response = await client.get(
                url,
                params=params,
                headers=req_headers,
                timeout=req_timeout,
            )
            response.raise_for_status()
            return response.json()

        except httpx.TimeoutException as e:
            logger.error(f"{service_id} request timed out after {req_timeout}s")
            raise UpstreamUnavailable(service_id, f"timed out after {req_timeout}s") from e

        except httpx.HTTPStatusError as e:
            logger.error(f"{service_id} returned HTTP {e.response.status_code}")
            raise UpstreamUnavailable(service_id, f"HTTP {e.response.status_code}") from e

        except httpx.RequestError as e:
            logger.error(f"{service_id} request failed: {e}")
            raise UpstreamUnavailable(service_id, type(e).__name__) from e

        except ValueError as e:
            logger.error(f"{service_id} returned an invalid JSON body")
            raise UpstreamUnavailable(service_id, "invalid JSON body") from e

    async def close(self) -> None:
        """Close the HTTP client."""
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
