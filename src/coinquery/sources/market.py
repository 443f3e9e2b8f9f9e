"""Mobula market-data source: quotes, metadata, price history and wallets."""

from typing import Any, Iterable

from coinquery.sources.ratelimit import RateLimitedClient


class MarketDataSource:
    """Thin async wrapper over the Mobula REST API.

    Every method returns the payload's ``data`` member (or ``None`` when the
    API omits it); HTTP failures propagate as ``ExternalApiFault``.
    """

    def __init__(self, client: RateLimitedClient, *, base_url: str, api_key: str | None = None):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    def _headers(self) -> dict[str, str]:
        return {"Authorization": self.api_key} if self.api_key else {}

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        return await self.client.get_json(
            f"{self.base_url}/{path}",
            params=params,
            headers=self._headers(),
        )

    async def market_data(self, asset: str) -> dict[str, Any] | None:
        payload = await self._get("market/data", {"asset": asset})
        return (payload or {}).get("data")

    async def metadata(self, asset: str) -> dict[str, Any] | None:
        payload = await self._get("metadata", {"asset": asset})
        return (payload or {}).get("data")

    async def price_history(self, asset: str, from_ms: int | None = None, to_ms: int | None = None) -> list[Any] | None:
        payload = await self._get("market/history", {"asset": asset, "from": from_ms, "to": to_ms})
        return ((payload or {}).get("data") or {}).get("price_history")

    async def wallet_portfolio(self, address: str) -> dict[str, Any] | None:
        payload = await self._get("wallet/multi-portfolio", {"wallets": address})
        portfolios = (payload or {}).get("data") or []
        return portfolios[0] if portfolios else None

    async def historic_portfolio(self, addresses: Iterable[str], from_ms: int, to_ms: int) -> Any:
        return await self._get(
            "wallet/history",
            {"wallets": ",".join(addresses), "from": from_ms, "to": to_ms},
        )
