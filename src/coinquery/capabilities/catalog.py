"""The concrete capability catalog exposed to generated programs.

Capability names are the program vocabulary the compiler prompt documents
(``price``, ``priceHistoryData``, ``kadena.getTransfers`` ...). Every token
argument is normalized once through the ``TokenTable`` before it reaches a
data source.
"""

import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from coinquery.capabilities.registry import Capability, CapabilityRegistry
from coinquery.errors import ExternalApiFault, ValidationFault
from coinquery.sources.kadena import KadenaClient
from coinquery.sources.market import MarketDataSource
from coinquery.sources.social import SocialDataSource
from coinquery.sources.tokens import TokenTable


logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000

TIME_PERIODS = {
    "1d": DAY_MS,
    "7d": 7 * DAY_MS,
    "30d": 30 * DAY_MS,
    "1y": 365 * DAY_MS,
}

NOT_AVAILABLE = "N/A"


def _money(value: Any) -> str:
    if value is None:
        return NOT_AVAILABLE
    return f"${float(value):.2f}"


def _percent(value: Any) -> str:
    if value is None:
        return NOT_AVAILABLE
    return f"{float(value):.2f}%"


def _raw(value: Any) -> Any:
    return NOT_AVAILABLE if value is None else value


# capability name -> (market data key, formatter, summary)
MARKET_FIELDS: tuple[tuple[str, str, Callable[[Any], Any], str], ...] = (
    ("price", "price", _money, "current price in USD"),
    ("volume", "volume", _money, "24h trading volume in USD"),
    ("marketCap", "market_cap", _money, "market capitalization in USD"),
    ("marketCapDiluted", "market_cap_diluted", _money, "fully diluted market cap in USD"),
    ("liquidity", "liquidity", _money, "current liquidity in USD"),
    ("liquidityChange24h", "liquidity_change_24h", _percent, "24h liquidity change %"),
    ("offChainVolume", "off_chain_volume", _money, "off-chain volume in USD"),
    ("volume7d", "volume_7d", _money, "7d volume in USD"),
    ("volumeChange24h", "volume_change_24h", _percent, "24h volume change %"),
    ("priceChange1h", "price_change_1h", _percent, "1h price change %"),
    ("priceChange24h", "price_change_24h", _percent, "24h price change %"),
    ("priceChange7d", "price_change_7d", _percent, "7d price change %"),
    ("priceChange1m", "price_change_1m", _percent, "30d price change %"),
    ("priceChange30d", "price_change_1m", _percent, "30d price change % (alias of priceChange1m)"),
    ("priceChange1y", "price_change_1y", _percent, "1y price change %"),
    ("ath", "ath", _money, "all-time high price"),
    ("atl", "atl", _money, "all-time low price"),
    ("rank", "rank", _raw, "market rank"),
    ("totalSupply", "total_supply", _raw, "total supply"),
    ("circulatingSupply", "circulating_supply", _raw, "circulating supply"),
)

# capability name -> (metadata key, summary)
METADATA_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("website", "website", "official website URL"),
    ("twitter", "twitter", "Twitter handle"),
    ("telegram", "telegram", "Telegram group link"),
    ("discord", "discord", "Discord server link"),
    ("description", "description", "project description"),
)


def _period_window(period: str) -> tuple[int, int]:
    """Return ``(from_ms, to_ms)`` covering ``period`` up to now."""
    if period not in TIME_PERIODS:
        raise ValidationFault(f"Unknown period '{period}'. Use one of: {', '.join(TIME_PERIODS)}")
    now = int(time.time() * 1000)
    return now - TIME_PERIODS[period], now


def _to_iso(value: Any) -> str | None:
    """Convert an epoch-milliseconds number or ISO string to ISO-8601 UTC."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return str(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class MarketCapabilities:
    """Market, metadata, history and wallet capabilities over Mobula."""

    def __init__(self, source: MarketDataSource, tokens: TokenTable):
        self.source = source
        self.tokens = tokens

    def field(self, key: str, formatter: Callable[[Any], Any]):
        async def read_field(token: str) -> Any:
            data = await self.source.market_data(self.tokens.normalize(token))
            return formatter((data or {}).get(key))

        return read_field

    def metadata_field(self, key: str):
        async def read_metadata(token: str) -> Any:
            metadata = await self.source.metadata(self.tokens.normalize(token))
            return (metadata or {}).get(key) or NOT_AVAILABLE

        return read_metadata

    async def is_listed(self, token: str) -> str:
        data = await self.source.market_data(self.tokens.normalize(token))
        return "Listed" if data else "Not Listed"

    async def price_history(self, token: str, period: str) -> Any:
        from_ms, to_ms = _period_window(period)
        return await self.source.price_history(self.tokens.normalize(token), from_ms, to_ms)

    async def historic_portfolio(self, addresses: str | Iterable[str], period: str) -> Any:
        from_ms, to_ms = _period_window(period)
        wallets = [addresses] if isinstance(addresses, str) else list(addresses)
        return await self.source.historic_portfolio(wallets, from_ms, to_ms)

    async def wallet_portfolio(self, address: str) -> Any:
        return await self.source.wallet_portfolio(address)

    async def cexs(self, token: str) -> Any:
        metadata = await self.source.metadata(self.tokens.normalize(token)) or {}
        listings = metadata.get("cexs")
        if not isinstance(listings, list):
            return "No CEX listing information available"
        exchanges = [
            {"name": cex.get("name") or cex["id"], "logo": cex.get("logo")}
            for cex in listings
            if isinstance(cex, dict) and cex.get("id")
        ]
        return {"totalListings": len(exchanges), "exchanges": exchanges}

    async def investors(self, token: str) -> Any:
        metadata = await self.source.metadata(self.tokens.normalize(token)) or {}
        raw = metadata.get("investors")
        if not isinstance(raw, list):
            return "No investor information available"
        investors = [
            {
                "name": investor.get("name"),
                "type": investor.get("type"),
                "isLead": bool(investor.get("lead")),
                "country": investor.get("country_name") or "Unknown",
                "image": investor.get("image"),
            }
            for investor in raw
            if isinstance(investor, dict)
        ]
        return {
            "totalInvestors": len(investors),
            "leadInvestors": [inv["name"] for inv in investors if inv["isLead"]],
            "vcInvestors": sum(1 for inv in investors if inv["type"] == "Ventures Capital"),
            "angelInvestors": sum(1 for inv in investors if inv["type"] == "Angel Investor"),
            "allInvestors": investors,
        }

    async def distribution(self, token: str) -> Any:
        metadata = await self.source.metadata(self.tokens.normalize(token)) or {}
        raw = metadata.get("distribution")
        if not isinstance(raw, list):
            return "No distribution information available"
        return [
            {"category": item.get("name"), "percentage": item.get("percentage")}
            for item in raw
            if isinstance(item, dict)
        ]

    async def release_schedule(self, token: str) -> Any:
        metadata = await self.source.metadata(self.tokens.normalize(token)) or {}
        raw = metadata.get("release_schedule")
        if not isinstance(raw, list):
            return "No release schedule information available"
        schedule = [
            {
                "date": _to_iso(item.get("unlock_date")),
                "tokensToUnlock": item.get("tokens_to_unlock") or 0,
                "allocation": item.get("allocation_details"),
            }
            for item in raw
            if isinstance(item, dict)
        ]
        now = _to_iso(time.time() * 1000)
        upcoming = sorted(
            (item for item in schedule if item["date"] and item["date"] > now),
            key=lambda item: item["date"],
        )
        return {
            "totalTokensInSchedule": sum(item["tokensToUnlock"] for item in schedule),
            "totalUnlockEvents": len(schedule),
            "upcomingUnlocks": upcoming[:5],
            "fullSchedule": schedule,
        }


class SocialCapabilities:
    """Social metrics, ranked lists and news over LunarCrush."""

    def __init__(self, source: SocialDataSource, tokens: TokenTable):
        self.source = source
        self.tokens = tokens

    async def social_data(self, token: str) -> Any:
        try:
            data = await self.source.topic(self.tokens.normalize(token))
        except ExternalApiFault as exc:
            logger.warning("Social data fetch failed for %s: %s", token, exc.message)
            return "Failed to fetch social data"
        if not data:
            return "No social data available"
        return {
            "topic": data.get("topic"),
            "title": data.get("title"),
            "topicRank": data.get("topic_rank"),
            "relatedTopics": data.get("related_topics"),
            "postCounts": data.get("types_count"),
            "interactions": {
                "total24h": data.get("interactions_24h"),
                "byType": data.get("types_interactions"),
            },
            "sentiment": {
                "byType": data.get("types_sentiment"),
                "details": data.get("types_sentiment_detail"),
            },
            "contributors": data.get("num_contributors"),
            "totalPosts": data.get("num_posts"),
            "categories": data.get("categories"),
            "trend": data.get("trend"),
        }

    async def list_by_category(self, sort: str = "social_dominance", filter: str = "", limit: int = 20) -> list[dict[str, Any]]:
        coins = await self.source.coin_list(sort, filter, limit)
        if not coins:
            raise ValueError("No data received from LunarCrush coin list")
        return [_coin_summary(coin) for coin in coins]

    async def topic_news(self, topic: str) -> Any:
        try:
            items = await self.source.topic_news(topic)
        except ExternalApiFault as exc:
            logger.warning("News fetch failed for %s: %s", topic, exc.message)
            return "Failed to fetch news data"
        if not items:
            return "No news data available"
        return [
            {
                "id": item.get("id"),
                "type": item.get("post_type"),
                "title": item.get("post_title"),
                "url": item.get("post_link"),
                "image": item.get("post_image"),
                "created": _to_iso(item["post_created"] * 1000) if item.get("post_created") else None,
                "sentiment": item.get("post_sentiment"),
                "creator": {
                    "id": item.get("creator_id"),
                    "name": item.get("creator_name"),
                    "displayName": item.get("creator_display_name"),
                    "followers": item.get("creator_followers"),
                    "avatar": item.get("creator_avatar"),
                },
                "interactions": {
                    "last24h": item.get("interactions_24h"),
                    "total": item.get("interactions_total"),
                },
            }
            for item in items
        ]


def _coin_summary(coin: dict[str, Any]) -> dict[str, Any]:
    categories = coin.get("categories")
    return {
        "id": coin.get("id"),
        "symbol": coin.get("symbol"),
        "name": coin.get("name"),
        "price": {"usd": coin.get("price"), "btc": coin.get("price_btc")},
        "volume24h": coin.get("volume_24h"),
        "volatility": coin.get("volatility"),
        "supply": {"circulating": coin.get("circulating_supply"), "max": coin.get("max_supply")},
        "priceChange": {
            "1h": coin.get("percent_change_1h"),
            "24h": coin.get("percent_change_24h"),
            "7d": coin.get("percent_change_7d"),
            "30d": coin.get("percent_change_30d"),
        },
        "marketCap": {
            "value": coin.get("market_cap"),
            "rank": coin.get("market_cap_rank"),
            "dominance": coin.get("market_dominance"),
            "previousDominance": coin.get("market_dominance_prev"),
        },
        "social": {
            "interactions24h": coin.get("interactions_24h"),
            "volume24h": coin.get("social_volume_24h"),
            "dominance": coin.get("social_dominance"),
            "sentiment": coin.get("sentiment"),
        },
        "scores": {
            "galaxy": {"current": coin.get("galaxy_score"), "previous": coin.get("galaxy_score_previous")},
            "altRank": {"current": coin.get("alt_rank"), "previous": coin.get("alt_rank_previous")},
        },
        "categories": categories.split(",") if isinstance(categories, str) and categories else [],
        "blockchains": coin.get("blockchains"),
        "topic": coin.get("topic"),
        "logo": coin.get("logo"),
        "lastUpdated": {"price": coin.get("last_updated_price"), "source": coin.get("last_updated_price_by")},
    }


def _kadena_capabilities(kadena: KadenaClient) -> list[Capability]:
    group = "Kadena Blockchain"

    async def paginate_all(query_name: str, params: dict[str, Any] | None = None, max_pages: int | None = None) -> list[Any]:
        return await kadena.paginate_all(query_name, params, math.inf if max_pages is None else max_pages)

    entries = [
        ("getBlock", kadena.get_block, "(hash)", "information about a specific block"),
        ("getBlocksFromDepth", kadena.get_blocks_from_depth, "(minimumDepth, first=20)", "blocks starting from a depth below the chain tip"),
        ("getBlocksFromHeight", kadena.get_blocks_from_height, "(startHeight, first=20)", "blocks starting from a height"),
        ("getTransactions", kadena.get_transactions, "(filters)", "transactions filtered by accountName, blockHash, chainId, requestKey, first, minHeight, maxHeight, minimumDepth"),
        ("getTransactionsByPublicKey", kadena.get_transactions_by_public_key, "(publicKey, first=10)", "transactions signed by a public key"),
        ("getTransfers", kadena.get_transfers, "(accountName, chainId=None, first=10)", "token transfers for an account"),
        ("getEvents", kadena.get_events, "(filters)", "events filtered by accountName, blockHash, chainId, qualifiedName, pactId, first, minHeight, maxHeight"),
        ("getFungibleAccount", kadena.get_fungible_account, "(accountName, chainId=None)", "fungible balances of an account, optionally on one chain"),
        ("getFungibleAccountsByPublicKey", kadena.get_fungible_accounts_by_public_key, "(publicKey, chainId, first=10)", "fungible accounts guarded by a public key"),
        ("paginateAll", paginate_all, "(queryName, params, max_pages=None)", f"all nodes of a paginated query; queryName is one of {', '.join(kadena.paged_query_names)}"),
    ]
    return [
        Capability(name, invoke, signature, summary, group, namespace="kadena")
        for name, invoke, signature, summary in entries
    ]


def build_registry(
    *,
    market: MarketDataSource,
    social: SocialDataSource,
    kadena: KadenaClient,
    tokens: TokenTable,
    wallet_addresses: Iterable[str],
) -> CapabilityRegistry:
    """Assemble the full capability registry over the given data sources."""
    market_caps = MarketCapabilities(market, tokens)
    social_caps = SocialCapabilities(social, tokens)

    capabilities: list[Capability] = [
        Capability(name, market_caps.field(key, formatter), "(token)", summary, "Market Data")
        for name, key, formatter, summary in MARKET_FIELDS
    ]
    capabilities.append(
        Capability("isListed", market_caps.is_listed, "(token)", "listing status", "Market Data")
    )
    capabilities.extend(
        Capability(name, market_caps.metadata_field(key), "(token)", summary, "Social/Info")
        for name, key, summary in METADATA_FIELDS
    )
    capabilities.extend([
        Capability("priceHistoryData", market_caps.price_history, "(token, period)", "list of [timestamp, price] points; period is one of 1d, 7d, 30d, 1y", "Historical Data"),
        Capability("getPriceHistory", market_caps.price_history, "(token, period)", "alias of priceHistoryData", "Historical Data"),
        Capability("getHistoricPortfolioData", market_caps.historic_portfolio, "(addresses, period)", "wallet balance history for the given addresses", "Historical Data"),
        Capability("getWalletPortfolio", market_caps.wallet_portfolio, "(address)", "detailed holdings of a wallet", "Wallet Analysis"),
        Capability("cexs", market_caps.cexs, "(token)", "centralized exchange listings", "Wallet Analysis"),
        Capability("investors", market_caps.investors, "(token)", "investor breakdown", "Wallet Analysis"),
        Capability("distribution", market_caps.distribution, "(token)", "token distribution by category", "Wallet Analysis"),
        Capability("releaseSchedule", market_caps.release_schedule, "(token)", "token unlock schedule", "Wallet Analysis"),
        Capability("getSocialData", social_caps.social_data, "(token)", "topic rank, post counts, interactions, sentiment, contributors and trend", "Social Analysis"),
        Capability("getListByCategory", social_caps.list_by_category, "(sort='social_dominance', filter='', limit=20)", "ranked coin list with price, market cap, social and Galaxy Score metrics; filter is a category like 'meme' or 'defi'", "List and Category Data"),
        Capability("getTopicNews", social_caps.topic_news, "(topic)", "latest news articles with sentiment and creator info", "News"),
    ])
    capabilities.extend(_kadena_capabilities(kadena))

    return CapabilityRegistry(
        capabilities,
        constants={
            "TIME_PERIODS": TIME_PERIODS,
            "portfolioAddresses": list(wallet_addresses),
        },
    )
