"""Intent compiler: turns a user question into a data-fetch program.

The system prompt documents every registered capability and the program
conventions the sandbox accepts. The model's raw text is returned as-is;
syntax checking belongs to the sandbox.
"""

import logging
from typing import Iterable

from coinquery.capabilities.registry import CapabilityRegistry
from coinquery.config import CoreConfig
from coinquery.errors import CompileFault
from coinquery.llm.router import ModelRouter


logger = logging.getLogger(__name__)


EXAMPLE_PROGRAM = '''```python
data = {
    "currentPrice": await price("bitcoin"),
    "priceChange24h": await priceChange24h("bitcoin"),
    "history7d": await priceHistoryData("bitcoin", "7d"),
    "socialMetrics": await getSocialData("bitcoin"),
    "news": await getTopicNews("bitcoin"),
}
return data
```'''

INSTRUCTIONS = """Instructions:
1. Return only the program, with no explanation or analysis before or after it
2. Return only the raw data needed to answer the user's question
3. Do not perform any calculations or analysis
4. Write Python statements: assignments, if/for, and `await` on the functions above
5. Do not import modules, define functions or classes, or use while/try/with/lambda
6. Always finish with `return data`, where data is a dict of the fetched values
7. For historical data, always specify the period needed (one of 1d, 7d, 30d, 1y)
8. For questions about token performance, price movement, or trading decisions, always include:
   - Price history for the 1d, 7d and 30d periods
   - Recent price changes
   - Market data (volume, liquidity, market cap)
9. Use gather(...) to await independent calls together when fetching many values"""


def build_system_prompt(registry: CapabilityRegistry, wallet_addresses: Iterable[str]) -> str:
    """Assemble the compile-stage system prompt from the registry catalog."""
    return "\n\n".join([
        "You are a crypto data fetcher. Your role is to identify and fetch the data "
        "needed to answer the user's question by writing a short program.\n"
        f"The user's wallet addresses are: {', '.join(wallet_addresses)} "
        "(also available as portfolioAddresses).",
        "Available functions (all are async and must be awaited):\n" + registry.describe(),
        "Example format:\n" + EXAMPLE_PROGRAM,
        INSTRUCTIONS,
    ])


class IntentCompiler:
    """Asks a model route for a data-fetch program."""

    def __init__(self, registry: CapabilityRegistry, config: CoreConfig, router: ModelRouter):
        self.registry = registry
        self.config = config
        self.router = router
        self.system_prompt = build_system_prompt(registry, config.wallet_addresses)

    async def compile(self, user_input: str, model: str | None = None) -> str:
        """Return the model's raw program text for a question.

        Args:
            user_input: Natural-language question
            model: Model route name (default route when None)

        Returns:
            Raw, non-empty response text

        Raises:
            ValidationFault: If the model route is unknown
            CompileFault: If the model call fails or returns nothing
        """
        route = self.config.route_for(model)
        try:
            text = await self.router.complete(self.system_prompt, user_input, route, purpose="compile")
        except ValueError as e:
            logger.error("Compile call failed on %s: %s", route.name, e)
            raise CompileFault(f"Failed to get AI response: {e}", details={"model": route.name}) from e

        if not text or not text.strip():
            raise CompileFault("Model returned no program text", details={"model": route.name})
        return text
