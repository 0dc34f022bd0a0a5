"""
Base provider interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

from relay.providers.client import ServiceClient
from relay.services.cache import RequestCache
from relay.services.errors import UpstreamUnavailable

T = TypeVar("T", bound=BaseModel)


@dataclass
class ProviderResult(Generic[T]):
    """Normalized provider data plus its cache provenance."""

    data: T
    cached: bool = False

    def to_response(self) -> dict[str, Any]:
        return {**self.data.model_dump(mode="json"), "cached": self.cached}


class BaseProvider(ABC, Generic[T]):
    """
    Abstract base class for upstream providers.

    All providers should:
    - Use ServiceClient for HTTP requests (timeouts, uniform errors)
    - Normalize into one Pydantic model per capability
    - Cache only successful, normalized results
    """

    SERVICE_ID: str = ""
    BASE_URL: str = ""

    def __init__(
        self,
        client: ServiceClient,
        cache: RequestCache | None = None,
        cache_ttl: int | None = None,
    ):
        self.client = client
        self.cache = cache
        self.cache_ttl = cache_ttl

    @property
    def service_id(self) -> str:
        return self.SERVICE_ID

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the provider is properly configured."""
        ...

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise UpstreamUnavailable(self.service_id, "provider not configured")

    def _normalize(self, model: type[T], build: Callable[[], T]) -> T:
        """Run a field mapping; any shape mismatch is an upstream failure."""
        try:
            return build()
        except (KeyError, IndexError, TypeError, AttributeError, ValidationError) as e:
            logger.error(f"{self.service_id} returned an unexpected {model.__name__} shape: {e}")
            raise UpstreamUnavailable(self.service_id, "unexpected response shape") from e

    async def _cached(
        self,
        key: str,
        model: type[T],
        fetch: Callable[[], Awaitable[T]],
    ) -> ProviderResult[T]:
        """Serve ``key`` from cache, or fetch, cache and return a fresh value."""
        use_cache = self.cache is not None and bool(self.cache_ttl)

        if use_cache:
            cached = await self.cache.get(key)
            if cached is not None:
                try:
                    return ProviderResult(data=model.model_validate(cached.value), cached=True)
                except ValidationError:
                    logger.warning(f"Ignoring stale-schema cache entry {key}")

        data = await fetch()

        if use_cache:
            await self.cache.set(key, data.model_dump(mode="json"), self.cache_ttl)

        return ProviderResult(data=data, cached=False)
