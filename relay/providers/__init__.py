"""
Third-party providers behind the ExternalApiGateway.
"""

from relay.providers.base import BaseProvider, ProviderResult
from relay.providers.client import ServiceClient, ServiceConfig
from relay.providers.exchange import ExchangeRateProvider, ExchangeRates
from relay.providers.gateway import ExternalApiGateway
from relay.providers.github import GitHubProfile, GitHubProvider
from relay.providers.news import NewsArticle, NewsDigest, NewsProvider
from relay.providers.quotes import Quote, QuoteProvider, RandomUser, RandomUserProvider
from relay.providers.weather import Weather, WeatherProvider

__all__ = [
    # Plumbing
    "BaseProvider",
    "ProviderResult",
    "ServiceClient",
    "ServiceConfig",
    "ExternalApiGateway",
    # Providers
    "WeatherProvider",
    "NewsProvider",
    "ExchangeRateProvider",
    "GitHubProvider",
    "QuoteProvider",
    "RandomUserProvider",
    # Models
    "Weather",
    "NewsArticle",
    "NewsDigest",
    "ExchangeRates",
    "GitHubProfile",
    "Quote",
    "RandomUser",
]
