"""Token identifier normalization.

Identifiers are matched case-insensitively against a symbol/name table and
mapped to the lower-cased coin name the data sources expect. Unmatched
inputs pass through lower-cased.
"""

import json
from pathlib import Path
from typing import Iterable, Mapping


DEFAULT_COINS: tuple[dict[str, str], ...] = (
    {"name": "bitcoin", "symbol": "btc"},
    {"name": "ethereum", "symbol": "eth"},
    {"name": "aptos", "symbol": "apt"},
    {"name": "binance coin", "symbol": "bnb"},
    {"name": "cardano", "symbol": "ada"},
    {"name": "solana", "symbol": "sol"},
    {"name": "ripple", "symbol": "xrp"},
    {"name": "polkadot", "symbol": "dot"},
    {"name": "kadena", "symbol": "kda"},
)


class TokenTable:
    """Read-only lookup from symbol or name to canonical coin name."""

    def __init__(self, coins: Iterable[Mapping[str, str]] = DEFAULT_COINS):
        lookup: dict[str, str] = {}
        for coin in coins:
            name = str(coin.get("name", "")).strip().lower()
            if not name:
                continue
            symbol = str(coin.get("symbol", "")).strip().lower()
            # First entry wins, matching a linear scan of the table
            lookup.setdefault(name, name)
            if symbol:
                lookup.setdefault(symbol, name)
        self._lookup = lookup

    def __len__(self) -> int:
        return len(self._lookup)

    def normalize(self, token: str) -> str:
        key = str(token).strip().lower()
        return self._lookup.get(key, key)

    @classmethod
    def from_file(cls, path: Path) -> "TokenTable":
        """Load a JSON list of ``{"name", "symbol"}`` objects."""
        with open(path, encoding="utf-8") as f:
            coins = json.load(f)
        if not isinstance(coins, list):
            raise ValueError(f"Coin table {path} must be a JSON list")
        return cls(coins)

    @classmethod
    def load(cls, path: Path | None) -> "TokenTable":
        if path is None:
            return cls()
        return cls.from_file(path)
