"""
NewsAPI top headlines.

API Documentation: https://newsapi.org/docs/endpoints/top-headlines
"""

from typing import Any

from pydantic import BaseModel, Field

from relay.providers.base import BaseProvider, ProviderResult
from relay.providers.client import ServiceClient
from relay.services.cache import RequestCache
from relay.services.errors import UpstreamUnavailable


class NewsArticle(BaseModel):
    """A single headline."""

    title: str = "No title"
    description: str = "No description"
    url: str | None = None
    url_to_image: str | None = None
    published_at: str | None = None
    source: str = "Unknown"


class NewsDigest(BaseModel):
    """Top headlines for a country and category."""

    country: str
    category: str
    total_results: int = 0
    articles: list[NewsArticle] = Field(default_factory=list)


class NewsProvider(BaseProvider[NewsDigest]):
    BASE_URL = "https://newsapi.org/v2"
    SERVICE_ID = "newsapi"
    PAGE_SIZE = 5

    def __init__(
        self,
        client: ServiceClient,
        api_key: str,
        cache: RequestCache | None = None,
        cache_ttl: int | None = 900,
    ):
        super().__init__(client, cache, cache_ttl)
        self.api_key = api_key

    def is_configured(self) -> bool:
        return bool(self.api_key)

    @staticmethod
    def cache_key(country: str, category: str) -> str:
        return f"news:{country.lower()}:{category.lower()}"

    async def fetch(self, country: str = "us", category: str = "technology") -> ProviderResult[NewsDigest]:
        self._require_configured()

        async def fetch_fresh() -> NewsDigest:
            data = await self.client.get_json(
                self.SERVICE_ID,
                f"{self.BASE_URL}/top-headlines",
                params={
                    "country": country,
                    "category": category,
                    "apiKey": self.api_key,
                    "pageSize": self.PAGE_SIZE,
                },
            )
            if not isinstance(data, dict) or not data.get("articles"):
                raise UpstreamUnavailable(self.SERVICE_ID, "no news articles found")
            return self._normalize(
                NewsDigest, lambda: self._transform_response(data, country, category)
            )

        return await self._cached(self.cache_key(country, category), NewsDigest, fetch_fresh)

    def _transform_response(self, data: dict[str, Any], country: str, category: str) -> NewsDigest:
        articles = []
        for article in data["articles"]:
            articles.append(
                NewsArticle(
                    title=article.get("title") or "No title",
                    description=article.get("description") or "No description",
                    url=article.get("url"),
                    url_to_image=article.get("urlToImage"),
                    published_at=article.get("publishedAt"),
                    source=(article.get("source") or {}).get("name") or "Unknown",
                )
            )

        return NewsDigest(
            country=country,
            category=category,
            total_results=data.get("totalResults", len(articles)),
            articles=articles,
        )
