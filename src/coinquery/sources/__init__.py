"""External data sources: rate-limited HTTP discipline, market, social and blockchain clients."""

from coinquery.sources.ratelimit import PageInfo, RateLimitedClient, RetryState, paginate, retry_with_backoff

__all__ = ["PageInfo", "RateLimitedClient", "RetryState", "paginate", "retry_with_backoff"]
