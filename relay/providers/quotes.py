"""
Random quotes and random user profiles. Never cached: every call should
return something new.
"""

from typing import Any

from pydantic import BaseModel, Field

from relay.providers.base import BaseProvider, ProviderResult
from relay.providers.client import ServiceClient
from relay.services.errors import UpstreamUnavailable


class Quote(BaseModel):
    content: str
    author: str = "Unknown"
    tags: list[str] = Field(default_factory=list)


class RandomUser(BaseModel):
    name: str
    email: str | None = None
    phone: str | None = None
    picture: str | None = None
    location: str = ""
    age: int | None = None


class QuoteProvider(BaseProvider[Quote]):
    BASE_URL = "https://api.quotable.io"
    SERVICE_ID = "quotable"

    def __init__(self, client: ServiceClient):
        super().__init__(client)

    def is_configured(self) -> bool:
        return True

    async def fetch(self) -> ProviderResult[Quote]:
        data = await self.client.get_json(self.SERVICE_ID, f"{self.BASE_URL}/random")
        if not isinstance(data, dict) or not data.get("content"):
            raise UpstreamUnavailable(self.SERVICE_ID, "invalid quote response")

        quote = self._normalize(
            Quote,
            lambda: Quote(
                content=data["content"],
                author=data.get("author") or "Unknown",
                tags=data.get("tags") or [],
            ),
        )
        return ProviderResult(data=quote)


class RandomUserProvider(BaseProvider[RandomUser]):
    BASE_URL = "https://randomuser.me"
    SERVICE_ID = "randomuser"

    def __init__(self, client: ServiceClient):
        super().__init__(client)

    def is_configured(self) -> bool:
        return True

    async def fetch(self) -> ProviderResult[RandomUser]:
        data = await self.client.get_json(self.SERVICE_ID, f"{self.BASE_URL}/api/")
        user = self._normalize(RandomUser, lambda: self._transform_response(data))
        return ProviderResult(data=user)

    def _transform_response(self, data: dict[str, Any]) -> RandomUser:
        user = data["results"][0]
        location = user.get("location") or {}
        return RandomUser(
            name=f"{user['name']['first']} {user['name']['last']}",
            email=user.get("email"),
            phone=user.get("phone"),
            picture=(user.get("picture") or {}).get("large"),
            location=", ".join(
                part for part in (location.get("city"), location.get("country")) if part
            ),
            age=(user.get("dob") or {}).get("age"),
        )
