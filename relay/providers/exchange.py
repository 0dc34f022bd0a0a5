"""
ExchangeRate-API latest conversion rates.

API Documentation: https://www.exchangerate-api.com/docs/standard-requests
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from relay.providers.base import BaseProvider, ProviderResult
from relay.providers.client import ServiceClient
from relay.services.cache import RequestCache

# Currencies reported back to callers
TRACKED_CURRENCIES = ["EUR", "GBP", "INR", "JPY", "AUD"]


class ExchangeRates(BaseModel):
    """Conversion rates from a base currency."""

    base: str
    date: str
    rates: dict[str, float] = Field(default_factory=dict)


class ExchangeRateProvider(BaseProvider[ExchangeRates]):
    BASE_URL = "https://v6.exchangerate-api.com/v6"
    SERVICE_ID = "exchangerate"

    def __init__(
        self,
        client: ServiceClient,
        api_key: str,
        cache: RequestCache | None = None,
        cache_ttl: int | None = 3600,
        currencies: list[str] | None = None,
    ):
        super().__init__(client, cache, cache_ttl)
        self.api_key = api_key
        self.currencies = currencies or TRACKED_CURRENCIES

    def is_configured(self) -> bool:
        return bool(self.api_key)

    @staticmethod
    def cache_key(base: str) -> str:
        return f"exchange:{base.upper()}"

    async def fetch(self, base: str = "USD") -> ProviderResult[ExchangeRates]:
        self._require_configured()
        base = base.upper()

        async def fetch_fresh() -> ExchangeRates:
            data = await self.client.get_json(
                self.SERVICE_ID,
                f"{self.BASE_URL}/{self.api_key}/latest/{base}",
            )
            return self._normalize(ExchangeRates, lambda: self._transform_response(data))

        return await self._cached(self.cache_key(base), ExchangeRates, fetch_fresh)

    def _transform_response(self, data: dict[str, Any]) -> ExchangeRates:
        conversion = data["conversion_rates"]
        return ExchangeRates(
            base=data["base_code"],
            date=datetime.now(timezone.utc).date().isoformat(),
            rates={c: conversion[c] for c in self.currencies if c in conversion},
        )
