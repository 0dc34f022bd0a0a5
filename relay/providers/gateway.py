"""
ExternalApiGateway - one facade over every third-party provider.

Routes call a single fetch_* coroutine per capability. Each call goes through
the shared ServiceClient (hard timeout, uniform UpstreamUnavailable errors)
and, for cacheable capabilities, through the RequestCache.
"""

import httpx
from loguru import logger

from relay.providers.base import ProviderResult
from relay.providers.client import ServiceClient, ServiceConfig
from relay.providers.exchange import ExchangeRateProvider, ExchangeRates
from relay.providers.github import GitHubProfile, GitHubProvider
from relay.providers.news import NewsDigest, NewsProvider
from relay.providers.quotes import Quote, QuoteProvider, RandomUser, RandomUserProvider
from relay.providers.weather import Weather, WeatherProvider
from relay.services.cache import RequestCache
from relay.settings import Settings


class ExternalApiGateway:
    def __init__(
        self,
        client: ServiceClient,
        weather: WeatherProvider,
        news: NewsProvider,
        exchange: ExchangeRateProvider,
        github: GitHubProvider,
        quotes: QuoteProvider,
        random_users: RandomUserProvider,
    ):
        self.client = client
        self.weather = weather
        self.news = news
        self.exchange = exchange
        self.github = github
        self.quotes = quotes
        self.random_users = random_users

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: RequestCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ExternalApiGateway":
        client = ServiceClient(default_timeout=settings.upstream_timeout, transport=transport)
        for provider_cls in (
            WeatherProvider,
            NewsProvider,
            ExchangeRateProvider,
            GitHubProvider,
            QuoteProvider,
            RandomUserProvider,
        ):
            client.register_service(
                ServiceConfig(
                    service_id=provider_cls.SERVICE_ID,
                    base_url=provider_cls.BASE_URL,
                    timeout=settings.upstream_timeout,
                )
            )

        gateway = cls(
            client=client,
            weather=WeatherProvider(
                client, settings.weather_api_key, cache, settings.cache_ttl_weather
            ),
            news=NewsProvider(client, settings.news_api_key, cache, settings.cache_ttl_news),
            exchange=ExchangeRateProvider(
                client, settings.exchange_api_key, cache, settings.cache_ttl_exchange
            ),
            github=GitHubProvider(client, settings.github_token, cache, settings.cache_ttl_github),
            quotes=QuoteProvider(client),
            random_users=RandomUserProvider(client),
        )

        missing = [
            p.service_id for p in (gateway.weather, gateway.news, gateway.exchange)
            if not p.is_configured()
        ]
        if missing:
            logger.warning(f"Providers without API keys: {', '.join(missing)}")
        return gateway

    async def fetch_weather(self, city: str) -> ProviderResult[Weather]:
        return await self.weather.fetch(city)

    async def fetch_news(
        self, country: str = "us", category: str = "technology"
    ) -> ProviderResult[NewsDigest]:
        return await self.news.fetch(country, category)

    async def fetch_exchange_rates(self, base: str = "USD") -> ProviderResult[ExchangeRates]:
        return await self.exchange.fetch(base)

    async def fetch_github_user(self, username: str) -> ProviderResult[GitHubProfile]:
        return await self.github.fetch(username)

    async def fetch_quote(self) -> ProviderResult[Quote]:
        return await self.quotes.fetch()

    async def fetch_random_user(self) -> ProviderResult[RandomUser]:
        return await self.random_users.fetch()

    async def close(self) -> None:
        await self.client.close()
