"""Fault taxonomy for the query-resolution pipeline.

Every fault carries a message, the pipeline stage it belongs to, optional
structured details and the UTC time it was raised. Only CompileFault and
ValidationFault end a request; the orchestrator turns the others into data.
"""

from datetime import datetime, timezone
from typing import Any


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class CoinQueryError(Exception):
    """Base class for all pipeline faults."""

    stage: str = "pipeline"

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        stage: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if stage is not None:
            self.stage = stage
        self.timestamp = utc_timestamp()

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "timestamp": self.timestamp,
            "details": {
                "stage": self.stage,
                "fault": type(self).__name__,
                **self.details,
            },
        }


class ValidationFault(CoinQueryError):
    """Required input is missing or malformed; nothing has run yet."""

    stage = "validate"


class CompileFault(CoinQueryError):
    """The model produced no usable program text."""

    stage = "compile"


class ExecutionFault(CoinQueryError):
    """The generated program failed, was rejected, or returned nothing."""

    stage = "execute"


class ExternalApiFault(CoinQueryError):
    """An outbound data-source call failed."""

    stage = "fetch"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        merged = dict(details or {})
        if status_code is not None:
            merged["status_code"] = status_code
        if url is not None:
            merged["url"] = url
        super().__init__(message, details=merged)
        self.status_code = status_code
        self.url = url


class RateLimitFault(ExternalApiFault):
    """An outbound call was throttled (HTTP 429)."""


class SynthesisFault(CoinQueryError):
    """The second model call failed or produced empty text."""

    stage = "synthesize"
