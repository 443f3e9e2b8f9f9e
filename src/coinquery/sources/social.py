"""LunarCrush social source: topic metrics, ranked coin lists and topic news."""

from typing import Any

from coinquery.sources.ratelimit import RateLimitedClient


class SocialDataSource:
    """Thin async wrapper over the LunarCrush v4 public API."""

    def __init__(self, client: RateLimitedClient, *, base_url: str, api_key: str | None = None):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

    async def _data(self, path: str, params: dict[str, Any] | None = None) -> Any:
        payload = await self.client.get_json(
            f"{self.base_url}/{path}",
            params=params,
            headers=self._headers(),
        )
        return (payload or {}).get("data")

    async def topic(self, topic: str) -> dict[str, Any] | None:
        return await self._data(f"topic/{topic}/v1")

    async def coin_list(self, sort: str = "social_dominance", filter: str = "", limit: int = 20) -> list[dict[str, Any]] | None:
        return await self._data("coins/list/v2", {"sort": sort, "filter": filter, "limit": limit})

    async def topic_news(self, topic: str) -> list[dict[str, Any]] | None:
        return await self._data(f"topic/{topic}/news/v1")
