"""Configuration for the coinquery pipeline.

All tunables are read from the environment exactly once, by
``CoreConfig.from_env()``, and the resulting object is passed to every
component. Nothing below the config layer touches ``os.environ``.

Environment variables:
- CQ_THROTTLE_MS: Delay before every blockchain GraphQL request (default 1000)
- CQ_MAX_RETRIES: Retries on HTTP 429 before giving up (default 3)
- CQ_BACKOFF_MULTIPLIER: Wait multiplier applied per retry (default 2)
- CQ_REST_THROTTLE_MS: Delay before every REST data request (default 0)
- CQ_HTTP_TIMEOUT: Outbound data request timeout in seconds (default 30)
- CQ_SANDBOX_TIMEOUT: Time budget for one generated program (default 60)
- CQ_SANDBOX_MAX_NODES: Syntax-tree size budget for one program (default 2000)
- CQ_DEFAULT_MODEL: Model route used when a request names none (default o3-mini)
- CQ_WALLET_ADDRESSES: Comma-separated wallet addresses exposed to programs
- CQ_COINS_FILE: Optional JSON list of {"name", "symbol"} coin entries
- CQ_API_KEYS: Comma-separated keys accepted by the HTTP endpoint
- MOBULA_API_KEY, LUNARCRUSH_API_KEY: Market and social data credentials
- KADENA_GRAPHQL_ENDPOINT, KADENA_GRAPHQL_KEY: Blockchain indexer access
- OPENAI_API_KEY, ANTHROPIC_API_KEY, GROQ_API_KEY, IONET_API_KEY: Model routes
- CQ_OLLAMA_BASE_URL, CQ_OLLAMA_MODEL: Local Ollama route
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from coinquery.errors import ValidationFault


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

MOBULA_BASE_URL = "https://api.mobula.io/api/1"
LUNARCRUSH_BASE_URL = "https://lunarcrush.com/api4/public"
KADENA_DEFAULT_ENDPOINT = "https://api.mainnet.kadindexer.io/v0"

PROVIDERS = ("openai", "anthropic", "openai_compatible", "ollama")


@dataclass(frozen=True)
class ModelRoute:
    """One entry of the model-route table.

    Output-length limits are stated per route and per call so that no route
    silently inherits another provider's defaults.
    """

    name: str
    provider: str
    model: str
    endpoint: str | None = None
    api_key: str | None = field(default=None, repr=False)
    compile_max_tokens: int | None = None
    synthesize_max_tokens: int | None = None
    temperature: float | None = None
    timeout: int = 120

    @property
    def has_credentials(self) -> bool:
        return self.provider == "ollama" or bool(self.api_key)


# name -> (provider, model, endpoint, key env var, compile tokens, synth tokens, temperature)
DEFAULT_ROUTES: dict[str, tuple[Any, ...]] = {
    "o3-mini": ("openai", "o3-mini", None, "OPENAI_API_KEY", 8000, 8000, None),
    "io.net": (
        "openai_compatible",
        "meta-llama/Llama-3.3-70B-Instruct",
        "https://api.intelligence.io.solutions/api/v1/chat/completions",
        "IONET_API_KEY",
        2048,
        1024,
        0.2,
    ),
    "groq": (
        "openai_compatible",
        "deepseek-r1-distill-llama-70b",
        "https://api.groq.com/openai/v1/chat/completions",
        "GROQ_API_KEY",
        4096,
        2048,
        0.2,
    ),
    "claude": ("anthropic", "claude-3-5-sonnet-20241022", None, "ANTHROPIC_API_KEY", 4096, 2048, 0.0),
    "ollama": ("ollama", "qwen2.5:14b-instruct", None, None, 4096, 1024, 0.0),
}


def build_routes(environ: Mapping[str, str]) -> Mapping[str, ModelRoute]:
    """Resolve the default route table against an environment mapping."""
    routes: dict[str, ModelRoute] = {}
    for name, (provider, model, endpoint, key_env, c_tokens, s_tokens, temp) in DEFAULT_ROUTES.items():
        if provider == "ollama":
            base_url = environ.get("CQ_OLLAMA_BASE_URL", "http://localhost:11434")
            endpoint = f"{base_url.rstrip('/')}/api/chat"
            model = environ.get("CQ_OLLAMA_MODEL", model)
        routes[name] = ModelRoute(
            name=name,
            provider=provider,
            model=model,
            endpoint=endpoint,
            api_key=environ.get(key_env) if key_env else None,
            compile_max_tokens=c_tokens,
            synthesize_max_tokens=s_tokens,
            temperature=temp,
        )
    return MappingProxyType(routes)


def _split_csv(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class CoreConfig:
    """Process-wide, read-only configuration for the pipeline."""

    # Rate-limited client
    throttle_ms: int = 1000
    max_retries: int = 3
    backoff_multiplier: float = 2.0
    rest_throttle_ms: int = 0
    http_timeout: float = 30.0

    # Sandbox
    sandbox_timeout: float = 60.0
    sandbox_max_nodes: int = 2000

    # Models
    default_model: str = "o3-mini"
    routes: Mapping[str, ModelRoute] = field(default_factory=lambda: build_routes({}))

    # Data exposed to generated programs
    wallet_addresses: tuple[str, ...] = (ZERO_ADDRESS,)
    coins_file: Path | None = None

    # Data sources
    mobula_api_key: str | None = field(default=None, repr=False)
    lunarcrush_api_key: str | None = field(default=None, repr=False)
    kadena_endpoint: str = KADENA_DEFAULT_ENDPOINT
    kadena_api_key: str | None = field(default=None, repr=False)
    mobula_base_url: str = MOBULA_BASE_URL
    lunarcrush_base_url: str = LUNARCRUSH_BASE_URL

    # HTTP boundary
    api_keys: tuple[str, ...] = field(default=(), repr=False)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "CoreConfig":
        """Build a config from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        coins_file = env.get("CQ_COINS_FILE")
        return cls(
            throttle_ms=int(env.get("CQ_THROTTLE_MS", "1000")),
            max_retries=int(env.get("CQ_MAX_RETRIES", "3")),
            backoff_multiplier=float(env.get("CQ_BACKOFF_MULTIPLIER", "2")),
            rest_throttle_ms=int(env.get("CQ_REST_THROTTLE_MS", "0")),
            http_timeout=float(env.get("CQ_HTTP_TIMEOUT", "30")),
            sandbox_timeout=float(env.get("CQ_SANDBOX_TIMEOUT", "60")),
            sandbox_max_nodes=int(env.get("CQ_SANDBOX_MAX_NODES", "2000")),
            default_model=env.get("CQ_DEFAULT_MODEL", "o3-mini"),
            routes=build_routes(env),
            wallet_addresses=_split_csv(env.get("CQ_WALLET_ADDRESSES")) or (ZERO_ADDRESS,),
            coins_file=Path(coins_file) if coins_file else None,
            mobula_api_key=env.get("MOBULA_API_KEY"),
            lunarcrush_api_key=env.get("LUNARCRUSH_API_KEY"),
            kadena_endpoint=env.get("KADENA_GRAPHQL_ENDPOINT", KADENA_DEFAULT_ENDPOINT),
            kadena_api_key=env.get("KADENA_GRAPHQL_KEY"),
            api_keys=_split_csv(env.get("CQ_API_KEYS")),
        )

    def with_overrides(self, **changes: Any) -> "CoreConfig":
        return replace(self, **changes)

    def route_for(self, model: str | None) -> ModelRoute:
        """Look up the route for a model identifier.

        Raises:
            ValidationFault: If the identifier names no configured route
        """
        name = model or self.default_model
        route = self.routes.get(name)
        if route is None:
            raise ValidationFault(
                f"Unsupported model: {name}. Supported: {', '.join(sorted(self.routes))}",
                details={"model": name},
            )
        return route
