"""Model access: per-route dispatch, HTTP transports and response sanitizing."""

from coinquery.llm.router import ModelRouter
from coinquery.llm.sanitize import sanitize, sanitize_payload

__all__ = ["ModelRouter", "sanitize", "sanitize_payload"]
