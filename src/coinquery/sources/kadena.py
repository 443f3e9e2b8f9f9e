"""Kadena blockchain source backed by the Kadindexer GraphQL API.

All requests go through a ``RateLimitedClient`` so the indexer sees at most
one request per throttle interval from this process, with backoff on 429.
Paginated queries follow the ``{edges: [{node}], pageInfo}`` convention and
can be drained with ``paginate_all``.
"""

import math
from typing import Any, Awaitable, Callable

from coinquery.errors import ExternalApiFault, ValidationFault
from coinquery.sources.ratelimit import RateLimitedClient, paginate


_TRANSACTION_NODE = """
              hash
              cmd {
                meta {
                  chainId
                  gasPrice
                  sender
                }
              }
              result {
                ... on TransactionResult {
                  gas
                  gasUsed
                }
              }
              block {
                height
                hash
              }
              creationTime
"""

_BLOCK_NODE = """
              hash
              height
              chainId
              minerAccount {
                accountName
              }
              transactions {
                edges {
                  node {
                    id
                    hash
                  }
                }
              }
              creationTime
"""

_PAGE_INFO = """
          pageInfo {
            hasNextPage
            endCursor
          }
"""

_BALANCES = """
          balances {
            edges {
              node {
                amount
                token {
                  id
                  name
                  fungible {
                    supply
                    decimals
                  }
                }
              }
            }
          }
"""

GET_BLOCK = """
query GetBlock($hash: String!) {
  block(hash: $hash) {
    hash
    height
    chainId
    minerAccount {
      accountName
    }
    transactions {
      edges {
        node {
          id
          hash
        }
      }
    }
    events {
      edges {
        node {
          id
          qualifiedName
        }
      }
    }
    creationTime
  }
}
"""

GET_BLOCKS_FROM_DEPTH = f"""
query GetBlocksFromDepth($minimumDepth: Int!, $first: Int, $after: String) {{
  blocksFromDepth(minimumDepth: $minimumDepth, first: $first, after: $after) {{
    edges {{
      node {{{_BLOCK_NODE}      }}
    }}{_PAGE_INFO}  }}
}}
"""

GET_BLOCKS_FROM_HEIGHT = f"""
query GetBlocksFromHeight($startHeight: Int!, $first: Int, $after: String) {{
  blocksFromHeight(startHeight: $startHeight, first: $first, after: $after) {{
    edges {{
      node {{{_BLOCK_NODE}      }}
    }}{_PAGE_INFO}  }}
}}
"""

GET_TRANSACTIONS = f"""
query GetTransactions(
  $accountName: String
  $blockHash: String
  $chainId: String
  $requestKey: String
  $first: Int
  $after: String
  $maxHeight: Int
  $minHeight: Int
  $minimumDepth: Int
) {{
  transactions(
    accountName: $accountName
    blockHash: $blockHash
    chainId: $chainId
    requestKey: $requestKey
    first: $first
    after: $after
    maxHeight: $maxHeight
    minHeight: $minHeight
    minimumDepth: $minimumDepth
  ) {{
    edges {{
      node {{{_TRANSACTION_NODE}      }}
    }}{_PAGE_INFO}  }}
}}
"""

GET_TRANSACTIONS_BY_PUBLIC_KEY = f"""
query GetTransactionsByPublicKey($publicKey: String!, $first: Int, $after: String) {{
  transactionsByPublicKey(publicKey: $publicKey, first: $first, after: $after) {{
    edges {{
      node {{{_TRANSACTION_NODE}      }}
    }}{_PAGE_INFO}  }}
}}
"""

GET_TRANSFERS = f"""
query GetTransfers($accountName: String!, $chainId: String, $first: Int, $after: String) {{
  transfers(accountName: $accountName, chainId: $chainId, first: $first, after: $after) {{
    edges {{
      node {{
        amount
        block {{
          height
          hash
        }}
        creationTime
        receiverAccount
        senderAccount
        transaction {{
          hash
        }}
      }}
    }}{_PAGE_INFO}  }}
}}
"""

GET_EVENTS = f"""
query GetEvents(
  $accountName: String
  $blockHash: String
  $chainId: String
  $first: Int
  $after: String
  $maxHeight: Int
  $minHeight: Int
  $minimumDepth: Int
  $qualifiedName: String
  $pactId: String
) {{
  events(
    accountName: $accountName
    blockHash: $blockHash
    chainId: $chainId
    first: $first
    after: $after
    maxHeight: $maxHeight
    minHeight: $minHeight
    minimumDepth: $minimumDepth
    qualifiedName: $qualifiedName
    pactId: $pactId
  ) {{
    edges {{
      node {{
        id
        qualifiedName
        name
        moduleHash
        module {{
          name
        }}
        params
        block {{
          height
          hash
        }}
        transaction {{
          hash
        }}
        creationTime
      }}
    }}{_PAGE_INFO}  }}
}}
"""

GET_FUNGIBLE_ACCOUNT = f"""
query GetFungibleAccount($accountName: String!) {{
  fungibleAccount(accountName: $accountName) {{
    accountName
    chainId{_BALANCES}  }}
}}
"""

GET_FUNGIBLE_CHAIN_ACCOUNT = """
query GetFungibleChainAccount($accountName: String!, $chainId: String!) {
  fungibleChainAccount(accountName: $accountName, chainId: $chainId) {
    accountName
    chainId
    balance
    fungibleName
  }
}
"""

GET_FUNGIBLE_ACCOUNTS_BY_PUBLIC_KEY = f"""
query GetFungibleAccountsByPublicKey($publicKey: String!, $chainId: String!, $first: Int, $after: String) {{
  fungibleAccountsByPublicKey(publicKey: $publicKey, chainId: $chainId, first: $first, after: $after) {{
    edges {{
      node {{
        accountName
        chainId{_BALANCES}      }}
    }}{_PAGE_INFO}  }}
}}
"""

# Filter keys accepted by the free-form transaction and event queries
TRANSACTION_FILTERS = frozenset(
    {"accountName", "blockHash", "chainId", "requestKey", "first", "after", "maxHeight", "minHeight", "minimumDepth"}
)
EVENT_FILTERS = frozenset(
    {"accountName", "blockHash", "chainId", "first", "after", "maxHeight", "minHeight", "minimumDepth", "qualifiedName", "pactId"}
)


def _filters(filters: dict[str, Any] | None, allowed: frozenset[str], query_name: str) -> dict[str, Any]:
    filters = dict(filters or {})
    unknown = sorted(set(filters) - allowed)
    if unknown:
        raise ValidationFault(
            f"{query_name}: unsupported filter(s) {', '.join(unknown)}",
            details={"allowed": sorted(allowed)},
        )
    return filters


class KadenaClient:
    """Async client for the Kadindexer GraphQL endpoint."""

    def __init__(self, client: RateLimitedClient, *, endpoint: str, api_key: str | None = None):
        self.client = client
        self.endpoint = endpoint
        self.api_key = api_key
        self._paged_queries: dict[str, str] = {
            "getBlocksFromDepth": GET_BLOCKS_FROM_DEPTH,
            "getBlocksFromHeight": GET_BLOCKS_FROM_HEIGHT,
            "getTransactions": GET_TRANSACTIONS,
            "getTransactionsByPublicKey": GET_TRANSACTIONS_BY_PUBLIC_KEY,
            "getTransfers": GET_TRANSFERS,
            "getEvents": GET_EVENTS,
            "getFungibleAccountsByPublicKey": GET_FUNGIBLE_ACCOUNTS_BY_PUBLIC_KEY,
        }

    @property
    def paged_query_names(self) -> tuple[str, ...]:
        return tuple(self._paged_queries)

    async def execute_query(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run one GraphQL query and return its ``data`` member.

        Raises:
            ExternalApiFault: On HTTP failure or a GraphQL ``errors`` array
        """
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key

        payload = await self.client.post_json(
            self.endpoint,
            {"query": query, "variables": variables or {}},
            headers=headers,
        )
        if payload.get("errors"):
            first = payload["errors"][0]
            message = first.get("message") if isinstance(first, dict) else str(first)
            raise ExternalApiFault(f"GraphQL error: {message}", url=self.endpoint)
        return payload.get("data") or {}

    async def get_block(self, hash: str) -> dict[str, Any]:
        return await self.execute_query(GET_BLOCK, {"hash": hash})

    async def get_blocks_from_depth(self, minimum_depth: int, first: int = 20, after: str | None = None) -> dict[str, Any]:
        return await self.execute_query(
            GET_BLOCKS_FROM_DEPTH, {"minimumDepth": minimum_depth, "first": first, "after": after}
        )

    async def get_blocks_from_height(self, start_height: int, first: int = 20, after: str | None = None) -> dict[str, Any]:
        return await self.execute_query(
            GET_BLOCKS_FROM_HEIGHT, {"startHeight": start_height, "first": first, "after": after}
        )

    async def get_transactions(self, filters: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.execute_query(GET_TRANSACTIONS, _filters(filters, TRANSACTION_FILTERS, "getTransactions"))

    async def get_transactions_by_public_key(self, public_key: str, first: int = 10, after: str | None = None) -> dict[str, Any]:
        return await self.execute_query(
            GET_TRANSACTIONS_BY_PUBLIC_KEY, {"publicKey": public_key, "first": first, "after": after}
        )

    async def get_transfers(
        self,
        account_name: str,
        chain_id: str | None = None,
        first: int = 10,
        after: str | None = None,
    ) -> dict[str, Any]:
        return await self.execute_query(
            GET_TRANSFERS,
            {"accountName": account_name, "chainId": chain_id, "first": first, "after": after},
        )

    async def get_events(self, filters: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.execute_query(GET_EVENTS, _filters(filters, EVENT_FILTERS, "getEvents"))

    async def get_fungible_account(self, account_name: str, chain_id: str | None = None) -> dict[str, Any]:
        if chain_id is None:
            return await self.execute_query(GET_FUNGIBLE_ACCOUNT, {"accountName": account_name})
        return await self.execute_query(
            GET_FUNGIBLE_CHAIN_ACCOUNT, {"accountName": account_name, "chainId": str(chain_id)}
        )

    async def get_fungible_accounts_by_public_key(
        self,
        public_key: str,
        chain_id: str,
        first: int = 10,
        after: str | None = None,
    ) -> dict[str, Any]:
        return await self.execute_query(
            GET_FUNGIBLE_ACCOUNTS_BY_PUBLIC_KEY,
            {"publicKey": public_key, "chainId": str(chain_id), "first": first, "after": after},
        )

    def paged_query(self, query_name: str) -> Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]:
        """Return a one-page fetcher for a paginated query, by capability name."""
        query = self._paged_queries.get(query_name)
        if query is None:
            raise ValidationFault(
                f"{query_name} is not a paginated query. Choose from: {', '.join(self._paged_queries)}",
                details={"query_name": query_name},
            )

        async def fetch_page(params: dict[str, Any]) -> dict[str, Any]:
            return await self.execute_query(query, params)

        return fetch_page

    async def paginate_all(
        self,
        query_name: str,
        params: dict[str, Any] | None = None,
        max_pages: float = math.inf,
    ) -> list[Any]:
        """Fetch every page of a paginated query and return the concatenated nodes."""
        return await paginate(self.paged_query(query_name), params or {}, max_pages)
