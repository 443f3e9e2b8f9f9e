"""Shared test fixtures for the coinquery test suite.

* ``sleeps``          -- records (instead of performing) client backoff sleeps
* ``make_client``     -- RateLimitedClient factory over an ``httpx.MockTransport``
* ``fake_registry``   -- small capability registry with canned, failing and slow entries
* ``scripted_router`` -- ModelRouter whose openai strategy replays scripted replies
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import httpx
import pytest

from coinquery.capabilities.catalog import TIME_PERIODS
from coinquery.capabilities.registry import Capability, CapabilityRegistry
from coinquery.config import ZERO_ADDRESS, CoreConfig
from coinquery.errors import ExternalApiFault
from coinquery.llm.router import ModelRouter
from coinquery.sources.ratelimit import RateLimitedClient


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


class SleepRecorder:
    """Awaitable stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_client(sleeps: SleepRecorder) -> Callable[..., RateLimitedClient]:
    def factory(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> RateLimitedClient:
        kwargs.setdefault("throttle_ms", 0)
        return RateLimitedClient(transport=httpx.MockTransport(handler), sleep=sleeps, **kwargs)

    return factory


# ---------------------------------------------------------------------------
# Capability registry
# ---------------------------------------------------------------------------

PRICES = {"bitcoin": "$65000.00", "ethereum": "$3200.50"}


async def _price(token: str) -> str:
    return PRICES.get(token.lower(), "N/A")


async def _market_outage(token: str) -> str:
    raise ExternalApiFault("GET market/data returned HTTP 503", status_code=503)


async def _slow() -> str:
    await asyncio.sleep(5)
    return "late"


async def _get_block(hash: str) -> dict[str, Any]:
    return {"block": {"hash": hash, "height": 100}}


@pytest.fixture
def fake_registry() -> CapabilityRegistry:
    return CapabilityRegistry(
        [
            Capability("price", _price, "(token)", "current price in USD", "Market Data"),
            Capability("volume", _market_outage, "(token)", "24h trading volume", "Market Data"),
            Capability("slowQuery", _slow, "()", "never finishes in time", "Testing"),
            Capability("getBlock", _get_block, "(hash)", "block by hash", "Kadena Blockchain", namespace="kadena"),
        ],
        constants={"TIME_PERIODS": TIME_PERIODS, "portfolioAddresses": [ZERO_ADDRESS]},
    )


# ---------------------------------------------------------------------------
# Model router
# ---------------------------------------------------------------------------


class ScriptedStrategy:
    """Provider strategy replaying scripted replies (or raising scripted errors) in order."""

    def __init__(self, replies: list[Any] | None = None):
        self.replies = list(replies or [])
        self.calls: list[dict[str, Any]] = []

    def __call__(self, route, messages, max_tokens):
        self.calls.append({"route": route.name, "messages": messages, "max_tokens": max_tokens})
        if not self.replies:
            raise AssertionError("Unexpected model call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def strategy() -> ScriptedStrategy:
    return ScriptedStrategy()


@pytest.fixture
def scripted_router(strategy: ScriptedStrategy) -> ModelRouter:
    return ModelRouter(strategies={"openai": strategy})


@pytest.fixture
def config() -> CoreConfig:
    return CoreConfig.from_env({"OPENAI_API_KEY": "sk-test", "CQ_THROTTLE_MS": "0"})
