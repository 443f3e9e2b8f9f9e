"""Orchestrator runtime for the query-resolution pipeline.

Runs the stages in order:
COMPILE → EXECUTE → SYNTHESIZE → DONE

Key features:
- Input validation before any model call
- Execution faults degrade to a placeholder payload instead of aborting
- Synthesis faults degrade to a fixed fallback message
- Only validation and compile faults produce ``success: false``
- Reasoning spans are stripped from every string in the final result
"""

import logging
import time
from enum import Enum
from typing import Any

from coinquery.capabilities.catalog import build_registry
from coinquery.capabilities.registry import CapabilityRegistry
from coinquery.config import CoreConfig
from coinquery.contracts import AnalysisData, AnalysisRequest, AnalysisResult, DebugInfo
from coinquery.errors import CoinQueryError, CompileFault, SynthesisFault, ValidationFault
from coinquery.explain.synthesizer import InsightSynthesizer
from coinquery.llm.router import ModelRouter
from coinquery.llm.sanitize import sanitize, sanitize_payload
from coinquery.planning.compiler import IntentCompiler
from coinquery.sandbox.executor import SandboxExecutor
from coinquery.sandbox.guardrails import ProgramGuardrailConfig
from coinquery.sources.kadena import KadenaClient
from coinquery.sources.market import MarketDataSource
from coinquery.sources.ratelimit import RateLimitedClient
from coinquery.sources.social import SocialDataSource
from coinquery.sources.tokens import TokenTable


logger = logging.getLogger(__name__)

FALLBACK_ANALYSIS = "Analysis could not be generated at this time."


class Stage(str, Enum):
    """Pipeline stage of one analysis run."""

    VALIDATE = "validate"
    COMPILE = "compile"
    EXECUTE = "execute"
    SYNTHESIZE = "synthesize"
    DONE = "done"


class AnalysisOrchestrator:
    """Sequences compiler, sandbox and synthesizer for one question at a time.

    Holds no per-request state, so one instance serves concurrent requests.

    Usage:
        async with build_orchestrator(CoreConfig.from_env()) as orchestrator:
            result = await orchestrator.analyze(AnalysisRequest(query="BTC price?", systemPrompt="..."))
    """

    def __init__(
        self,
        config: CoreConfig,
        compiler: IntentCompiler,
        executor: SandboxExecutor,
        synthesizer: InsightSynthesizer,
        clients: list[RateLimitedClient] | None = None,
    ):
        self.config = config
        self.compiler = compiler
        self.executor = executor
        self.synthesizer = synthesizer
        self._clients = list(clients or [])

    async def __aenter__(self) -> "AnalysisOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        for client in self._clients:
            await client.aclose()

    @property
    def registry(self) -> CapabilityRegistry:
        return self.executor.registry

    def _validate(self, request: AnalysisRequest) -> str:
        if not request.user_input or not request.user_input.strip():
            raise ValidationFault("Query is required")
        if not request.system_prompt or not request.system_prompt.strip():
            raise ValidationFault("System prompt is required")
        return self.config.route_for(request.model).name

    async def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        """Resolve one question end to end.

        Args:
            request: Question, persona prompt and optional model route

        Returns:
            AnalysisResult; ``success`` is False for validation or compile faults
            and for unexpected errors in any later stage
        """
        timings: dict[str, float] = {}
        stage = Stage.VALIDATE
        try:
            try:
                model = self._validate(request)

                stage = Stage.COMPILE
                logger.info("Stage %s: model=%s", stage.value, model)
                started = time.perf_counter()
                program = sanitize(await self.compiler.compile(request.user_input, model))
                timings[stage.value] = _elapsed_ms(started)
                if not program:
                    raise CompileFault("Model returned no program text after removing reasoning", details={"model": model})
            except (ValidationFault, CompileFault) as fault:
                logger.error("Stage %s failed: %s", stage.value, fault.message)
                return AnalysisResult.failed(fault)

            stage = Stage.EXECUTE
            logger.info("Stage %s", stage.value)
            execution = await self.executor.execute(program)
            timings[stage.value] = execution.elapsed_ms
            raw_data = execution.to_raw_data()
            if not execution.ok:
                logger.warning("Execution degraded to partial data: %s", execution.error_message)

            stage = Stage.SYNTHESIZE
            logger.info("Stage %s", stage.value)
            synthesis_error = None
            started = time.perf_counter()
            try:
                analysis = sanitize(
                    await self.synthesizer.synthesize(request.user_input, raw_data, request.system_prompt, model)
                )
                if not analysis:
                    raise SynthesisFault("Model returned empty analysis", details={"model": model})
            except SynthesisFault as fault:
                logger.warning("Synthesis degraded to fallback message: %s", fault.message)
                synthesis_error = fault.message
                analysis = FALLBACK_ANALYSIS
            timings[stage.value] = _elapsed_ms(started)

            stage = Stage.DONE
            debug_info = DebugInfo(
                generated_code=execution.program or program,
                system_prompt=request.system_prompt,
                model=model,
                execution_error=execution.error_message,
                synthesis_error=synthesis_error,
                warnings=execution.warnings,
                elapsed_ms=timings,
            )
            logger.info("Stage %s: execution_ok=%s", stage.value, execution.ok)
            return AnalysisResult.ok(
                AnalysisData(
                    raw_data=sanitize_payload(raw_data),
                    analysis=sanitize(analysis),
                    debug_info=DebugInfo.model_validate(sanitize_payload(debug_info.model_dump())),
                )
            )
        except Exception as exc:
            logger.exception("Stage %s raised unexpectedly", stage.value)
            return AnalysisResult.failed(
                CoinQueryError(
                    str(exc) or type(exc).__name__,
                    details={"error": type(exc).__name__},
                    stage=stage.value,
                )
            )


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def build_sources(config: CoreConfig, *, transport: Any = None) -> tuple[dict[str, Any], list[RateLimitedClient]]:
    """Create the data sources and the HTTP clients they share.

    The blockchain indexer gets its own throttled client; the REST sources
    share one with the (usually zero) REST throttle.
    """
    graphql_client = RateLimitedClient(
        throttle_ms=config.throttle_ms,
        max_retries=config.max_retries,
        backoff_multiplier=config.backoff_multiplier,
        timeout=config.http_timeout,
        transport=transport,
        name="kadena",
    )
    rest_client = RateLimitedClient(
        throttle_ms=config.rest_throttle_ms,
        max_retries=config.max_retries,
        backoff_multiplier=config.backoff_multiplier,
        timeout=config.http_timeout,
        transport=transport,
        name="rest",
    )
    sources = {
        "market": MarketDataSource(rest_client, base_url=config.mobula_base_url, api_key=config.mobula_api_key),
        "social": SocialDataSource(rest_client, base_url=config.lunarcrush_base_url, api_key=config.lunarcrush_api_key),
        "kadena": KadenaClient(graphql_client, endpoint=config.kadena_endpoint, api_key=config.kadena_api_key),
    }
    return sources, [graphql_client, rest_client]


def build_executor(config: CoreConfig, registry: CapabilityRegistry) -> SandboxExecutor:
    return SandboxExecutor(
        registry,
        ProgramGuardrailConfig(
            max_nodes=config.sandbox_max_nodes,
            timeout_seconds=config.sandbox_timeout,
        ),
    )


def build_orchestrator(
    config: CoreConfig,
    *,
    router: ModelRouter | None = None,
    transport: Any = None,
) -> AnalysisOrchestrator:
    """Wire every component from one configuration object."""
    sources, clients = build_sources(config, transport=transport)
    registry = build_registry(
        market=sources["market"],
        social=sources["social"],
        kadena=sources["kadena"],
        tokens=TokenTable.load(config.coins_file),
        wallet_addresses=config.wallet_addresses,
    )
    router = router or ModelRouter()
    return AnalysisOrchestrator(
        config,
        IntentCompiler(registry, config, router),
        build_executor(config, registry),
        InsightSynthesizer(config, router),
        clients=clients,
    )

