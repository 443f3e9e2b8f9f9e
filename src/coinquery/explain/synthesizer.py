"""Insight synthesizer: the second model call, from fetched data to an answer."""

import json
import logging
from typing import Any

from coinquery.config import CoreConfig
from coinquery.errors import SynthesisFault, ValidationFault
from coinquery.llm.router import ModelRouter


logger = logging.getLogger(__name__)


def build_user_message(user_input: str, fetched_data: Any) -> str:
    return (
        f"User Question: {user_input}\n\n"
        f"Available Data:\n{json.dumps(fetched_data, indent=2, default=str)}\n\n"
        "Please analyze this data and provide insights that directly address the user's question."
    )


class InsightSynthesizer:
    """Turns a question plus fetched data into natural-language analysis."""

    def __init__(self, config: CoreConfig, router: ModelRouter):
        self.config = config
        self.router = router

    async def synthesize(
        self,
        user_input: str,
        fetched_data: Any,
        system_prompt: str | None,
        model: str | None = None,
    ) -> str:
        """Ask the model route to analyze ``fetched_data`` in the given persona.

        Raises:
            ValidationFault: If ``system_prompt`` is missing or blank
            SynthesisFault: If the model call fails
        """
        if not system_prompt or not system_prompt.strip():
            raise ValidationFault("System prompt is required for analysis")

        route = self.config.route_for(model)
        try:
            return await self.router.complete(
                system_prompt,
                build_user_message(user_input, fetched_data),
                route,
                purpose="synthesize",
            )
        except ValueError as e:
            logger.error("Synthesis call failed on %s: %s", route.name, e)
            raise SynthesisFault("Failed to analyze data", details={"model": route.name, "cause": str(e)}) from e
