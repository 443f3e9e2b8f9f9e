"""Model router: dispatches chat calls to a provider strategy per route.

Each ``ModelRoute`` names its provider; the router keeps one strategy per
provider and passes it the route's own output-length limit for the call's
purpose, so no route inherits another provider's defaults.

Supported providers:
- openai: OpenAI chat completions (reasoning models take ``max_completion_tokens``)
- anthropic: Claude models via the Anthropic API
- openai_compatible: any OpenAI-style HTTP endpoint (io.net, groq)
- ollama: Local models via Ollama
"""

import asyncio
import importlib.util
import logging
from typing import Callable

from coinquery.config import ModelRoute
from coinquery.llm.transport import ollama_chat, openai_compatible_chat


logger = logging.getLogger(__name__)

Messages = list[dict[str, str]]
Strategy = Callable[[ModelRoute, Messages, int | None], str]

PURPOSES = ("compile", "synthesize")


def _require_key(route: ModelRoute) -> str:
    if not route.api_key:
        raise ValueError(f"No API key configured for model route '{route.name}'")
    return route.api_key


def _call_openai(route: ModelRoute, messages: Messages, max_tokens: int | None) -> str:
    """Call the OpenAI API."""
    try:
        import openai
    except ImportError:
        raise ImportError(
            "openai package not installed. "
            "Install with: pip install openai"
        )

    client = openai.OpenAI(api_key=_require_key(route), timeout=route.timeout)
    kwargs = {"model": route.model, "messages": messages}
    if max_tokens is not None:
        kwargs["max_completion_tokens"] = max_tokens
    if route.temperature is not None:
        kwargs["temperature"] = route.temperature

    response = client.chat.completions.create(**kwargs)
    return response.choices[0].message.content or ""


def _call_anthropic(route: ModelRoute, messages: Messages, max_tokens: int | None) -> str:
    """Call the Anthropic API (Claude models)."""
    try:
        import anthropic
    except ImportError:
        raise ImportError(
            "anthropic package not installed. "
            "Install with: pip install anthropic"
        )

    client = anthropic.Anthropic(api_key=_require_key(route), timeout=route.timeout)

    # Extract system message if present
    system_content = None
    api_messages = []
    for msg in messages:
        if msg["role"] == "system":
            system_content = msg["content"]
        else:
            api_messages.append(msg)

    response = client.messages.create(
        model=route.model,
        max_tokens=max_tokens or 4096,
        temperature=route.temperature if route.temperature is not None else 0.0,
        system=system_content or "You are a helpful crypto data assistant.",
        messages=api_messages,
    )
    return "".join(block.text for block in response.content if getattr(block, "type", "text") == "text")


def _call_openai_compatible(route: ModelRoute, messages: Messages, max_tokens: int | None) -> str:
    if not route.endpoint:
        raise ValueError(f"Model route '{route.name}' has no endpoint")
    return openai_compatible_chat(
        messages,
        endpoint=route.endpoint,
        api_key=_require_key(route),
        model=route.model,
        temperature=route.temperature,
        max_tokens=max_tokens,
        timeout=route.timeout,
    )


def _call_ollama(route: ModelRoute, messages: Messages, max_tokens: int | None) -> str:
    return ollama_chat(
        messages,
        endpoint=route.endpoint or "http://localhost:11434/api/chat",
        model=route.model,
        temperature=route.temperature,
        max_tokens=max_tokens,
        timeout=route.timeout,
    )


DEFAULT_STRATEGIES: dict[str, Strategy] = {
    "openai": _call_openai,
    "anthropic": _call_anthropic,
    "openai_compatible": _call_openai_compatible,
    "ollama": _call_ollama,
}


class ModelRouter:
    """Pluggable per-provider strategies for one-shot chat calls.

    Strategies are blocking (SDK or ``requests`` calls) and run in a worker
    thread so a model call never blocks the event loop.

    Usage:
        router = ModelRouter()
        text = await router.complete(system_prompt, question, config.route_for("groq"), purpose="compile")
    """

    def __init__(self, strategies: dict[str, Strategy] | None = None):
        self.strategies = dict(DEFAULT_STRATEGIES)
        if strategies:
            self.strategies.update(strategies)

    async def complete(
        self,
        system: str,
        user: str,
        route: ModelRoute,
        *,
        purpose: str = "compile",
    ) -> str:
        """Send one system+user exchange to the route's provider.

        Args:
            system: System prompt
            user: User message
            route: Resolved model route
            purpose: 'compile' or 'synthesize'; selects the route's token limit

        Returns:
            Raw response text (possibly empty)

        Raises:
            ValueError: If the provider is unsupported or the call fails
        """
        if purpose not in PURPOSES:
            raise ValueError(f"Invalid purpose: {purpose}. Must be one of {', '.join(PURPOSES)}")

        strategy = self.strategies.get(route.provider)
        if strategy is None:
            raise ValueError(
                f"Unsupported LLM provider: {route.provider}. "
                f"Supported: {', '.join(sorted(self.strategies))}"
            )

        max_tokens = route.compile_max_tokens if purpose == "compile" else route.synthesize_max_tokens
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

        logger.info("Calling %s (%s/%s) for %s", route.name, route.provider, route.model, purpose)
        try:
            return await asyncio.to_thread(strategy, route, messages, max_tokens)
        except ValueError:
            raise
        except Exception as e:
            raise ValueError(f"{route.name} call failed: {type(e).__name__}: {e}") from e


def _has_module(module_name: str) -> bool:
    """Return True when a module is installed in the current environment."""
    return importlib.util.find_spec(module_name) is not None


def describe_routes(routes: dict[str, ModelRoute]) -> list[dict[str, object]]:
    """Summarize configured routes and whether each can be called."""
    sdk_for = {"openai": "openai", "anthropic": "anthropic"}
    summary = []
    for name, route in routes.items():
        sdk = sdk_for.get(route.provider)
        summary.append({
            "name": name,
            "provider": route.provider,
            "model": route.model,
            "endpoint": route.endpoint,
            "credentials": route.has_credentials,
            "sdk_installed": _has_module(sdk) if sdk else True,
        })
    return summary
