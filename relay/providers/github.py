"""
GitHub public user profiles.

API Documentation: https://docs.github.com/en/rest/users/users
"""

from typing import Any

from pydantic import BaseModel

from relay.providers.base import BaseProvider, ProviderResult
from relay.providers.client import ServiceClient
from relay.services.cache import RequestCache


class GitHubProfile(BaseModel):
    """Public profile of a GitHub user."""

    login: str
    name: str
    avatar: str | None = None
    bio: str | None = None
    public_repos: int = 0
    followers: int = 0
    following: int = 0
    created_at: str | None = None
    html_url: str | None = None


class GitHubProvider(BaseProvider[GitHubProfile]):
    BASE_URL = "https://api.github.com"
    SERVICE_ID = "github"

    def __init__(
        self,
        client: ServiceClient,
        token: str = "",
        cache: RequestCache | None = None,
        cache_ttl: int | None = 1800,
    ):
        super().__init__(client, cache, cache_ttl)
        self.token = token

    def is_configured(self) -> bool:
        """Anonymous access works, with a lower upstream quota."""
        return True

    @staticmethod
    def cache_key(username: str) -> str:
        return f"github:{username.lower()}"

    async def fetch(self, username: str) -> ProviderResult[GitHubProfile]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"

        async def fetch_fresh() -> GitHubProfile:
            data = await self.client.get_json(
                self.SERVICE_ID,
                f"{self.BASE_URL}/users/{username}",
                headers=headers,
            )
            return self._normalize(GitHubProfile, lambda: self._transform_response(data))

        return await self._cached(self.cache_key(username), GitHubProfile, fetch_fresh)

    def _transform_response(self, data: dict[str, Any]) -> GitHubProfile:
        return GitHubProfile(
            login=data["login"],
            name=data.get("name") or data["login"],
            avatar=data.get("avatar_url"),
            bio=data.get("bio"),
            public_repos=data.get("public_repos") or 0,
            followers=data.get("followers") or 0,
            following=data.get("following") or 0,
            created_at=data.get("created_at"),
            html_url=data.get("html_url"),
        )
