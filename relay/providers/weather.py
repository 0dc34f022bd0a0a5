"""
OpenWeatherMap current weather.

API Documentation: https://openweathermap.org/current
"""

from typing import Any

from pydantic import BaseModel

from relay.providers.base import BaseProvider, ProviderResult
from relay.providers.client import ServiceClient
from relay.services.cache import RequestCache


class Weather(BaseModel):
    """Current weather for a city."""

    city: str
    country: str = ""
    temperature: float
    feels_like: float | None = None
    humidity: int | None = None
    description: str = ""
    icon: str | None = None
    wind_speed: float = 0.0


class WeatherProvider(BaseProvider[Weather]):
    BASE_URL = "https://api.openweathermap.org/data/2.5"
    SERVICE_ID = "openweathermap"

    def __init__(
        self,
        client: ServiceClient,
        api_key: str,
        cache: RequestCache | None = None,
        cache_ttl: int | None = 600,
    ):
        super().__init__(client, cache, cache_ttl)
        self.api_key = api_key

    def is_configured(self) -> bool:
        return bool(self.api_key)

    @staticmethod
    def cache_key(city: str) -> str:
        return f"weather:{city.strip().lower()}"

    async def fetch(self, city: str) -> ProviderResult[Weather]:
        self._require_configured()

        async def fetch_fresh() -> Weather:
            data = await self.client.get_json(
                self.SERVICE_ID,
                f"{self.BASE_URL}/weather",
                params={"q": city, "appid": self.api_key, "units": "metric"},
            )
            return self._normalize(Weather, lambda: self._transform_response(data))

        return await self._cached(self.cache_key(city), Weather, fetch_fresh)

    def _transform_response(self, data: dict[str, Any]) -> Weather:
        main = data["main"]
        conditions = (data.get("weather") or [{}])[0]
        return Weather(
            city=data["name"],
            country=(data.get("sys") or {}).get("country", ""),
            temperature=main["temp"],
            feels_like=main.get("feels_like"),
            humidity=main.get("humidity"),
            description=conditions.get("description", ""),
            icon=conditions.get("icon"),
            wind_speed=(data.get("wind") or {}).get("speed", 0.0),
        )
