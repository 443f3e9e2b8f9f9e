"""Sandbox executor for model-generated data-fetch programs.

This module runs a generated program with exactly the capability registry
bound as its external surface and enforces:
- Cleaning of fences and prose around the program text
- Static allow-list validation before anything runs
- A fresh, minimal builtins dict per run
- Step budget and wall-clock time budget
- Conversion of every fault into an ``ExecutionResult`` (never raised)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from coinquery.capabilities.registry import CapabilityRegistry
from coinquery.errors import CoinQueryError, ExecutionFault, utc_timestamp
from coinquery.sandbox.guardrails import (
    CONCAT_HOOK,
    METHOD_HOOK,
    PROGRAM_FUNCTION,
    REPEAT_HOOK,
    TICK_HOOK,
    ProgramGuardrailConfig,
    StepBudget,
    ValidationResult,
    clean_program_text,
    compile_program,
    make_concat,
    make_method,
    make_repeat,
    safe_builtins,
    validate_program,
)


logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "No data returned"


@dataclass
class ExecutionResult:
    """Outcome of one program run: exactly one of ``value`` or ``error_message``."""

    ok: bool
    value: Any = None
    error_message: str | None = None
    timestamp: str = field(default_factory=utc_timestamp)
    program: str = ""
    elapsed_ms: float = 0.0
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.ok and (self.value is None or self.error_message is not None):
            raise ValueError("A successful result carries a value and no error")
        if not self.ok and (not self.error_message or self.value is not None):
            raise ValueError("A failed result carries an error and no value")

    @classmethod
    def success(cls, value: Any, **kwargs: Any) -> "ExecutionResult":
        return cls(ok=True, value=value, **kwargs)

    @classmethod
    def failure(cls, message: str, **kwargs: Any) -> "ExecutionResult":
        return cls(ok=False, error_message=message, **kwargs)

    def to_raw_data(self) -> Any:
        """Shape the result as the data handed to the synthesizer."""
        if self.ok:
            return self.value
        return {
            "error": True,
            "message": self.error_message,
            "timestamp": self.timestamp,
            "partialData": {},
        }


def to_plain(value: Any, _seen: frozenset[int] = frozenset()) -> Any:
    """Convert read-only containers a program may return into JSON-friendly ones.

    Raises:
        ExecutionFault: If a container holds itself
    """
    if isinstance(value, (dict, MappingProxyType, list, tuple, set, frozenset)):
        if id(value) in _seen:
            raise ExecutionFault("Program returned a cyclic value")
        seen = _seen | {id(value)}
        if isinstance(value, (dict, MappingProxyType)):
            return {key: to_plain(item, seen) for key, item in value.items()}
        return [to_plain(item, seen) for item in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


async def gather(*awaitables: Any) -> list[Any]:
    """Await several capability calls concurrently, preserving order."""
    return list(await asyncio.gather(*awaitables))


class SandboxExecutor:
    """Runs generated programs against a capability registry.

    Usage:
        executor = SandboxExecutor(registry)
        result = await executor.execute('data = {"price": await price("btc")}')
        if result.ok:
            print(result.value)
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        config: ProgramGuardrailConfig | None = None,
    ):
        self.registry = registry
        self.config = config or ProgramGuardrailConfig()

    def _reserved_names(self) -> set[str]:
        return set(self.registry.bindings()) | set(safe_builtins(self.config)) | {"gather"}

    def validate(self, program_text: str) -> ValidationResult:
        """Clean and validate program text without executing it."""
        return validate_program(
            clean_program_text(program_text),
            self._reserved_names(),
            self.registry.namespace_members(),
            self.config,
        )

    def _namespace(self) -> dict[str, Any]:
        namespace: dict[str, Any] = {"__builtins__": safe_builtins(self.config)}
        namespace.update(self.registry.bindings())
        namespace["gather"] = gather
        namespace[TICK_HOOK] = StepBudget(self.config.max_steps).tick
        namespace[REPEAT_HOOK] = make_repeat(self.config.max_sequence_length, self.config.max_int_bits)
        namespace[CONCAT_HOOK] = make_concat(self.config.max_sequence_length)
        namespace[METHOD_HOOK] = make_method(self.config.max_sequence_length)
        return namespace

    async def execute(self, program_text: str | None) -> ExecutionResult:
        """Execute program text and capture its value or fault.

        Args:
            program_text: Raw text from the intent compiler

        Returns:
            ExecutionResult; never raises for program faults
        """
        start = time.perf_counter()
        program = clean_program_text(program_text)

        def elapsed() -> float:
            return round((time.perf_counter() - start) * 1000, 2)

        if not program:
            return ExecutionResult.failure("Empty program", program="", elapsed_ms=elapsed())

        validation = self.validate(program)
        warnings = list(validation.warnings or [])
        if not validation.is_valid:
            logger.warning("Program rejected: %s", validation.error)
            return ExecutionResult.failure(
                f"Program rejected: {validation.error}",
                program=program,
                elapsed_ms=elapsed(),
            )

        namespace = self._namespace()
        try:
            exec(compile_program(program), namespace)
            value = await asyncio.wait_for(namespace[PROGRAM_FUNCTION](), self.config.timeout_seconds)
            value = to_plain(value)
        except asyncio.TimeoutError:
            message = f"Program exceeded time budget of {self.config.timeout_seconds:g}s"
            logger.warning(message)
            return ExecutionResult.failure(message, program=program, elapsed_ms=elapsed(), warnings=warnings)
        except CoinQueryError as exc:
            logger.warning("Program failed: %s", exc.message)
            return ExecutionResult.failure(exc.message, program=program, elapsed_ms=elapsed(), warnings=warnings)
        except Exception as exc:
            logger.warning("Program raised %s: %s", type(exc).__name__, exc)
            return ExecutionResult.failure(
                f"{type(exc).__name__}: {exc}",
                program=program,
                elapsed_ms=elapsed(),
                warnings=warnings,
            )

        if value is None:
            return ExecutionResult.failure(NO_DATA_MESSAGE, program=program, elapsed_ms=elapsed(), warnings=warnings)

        logger.info("Program completed in %.0fms", elapsed())
        return ExecutionResult.success(value, program=program, elapsed_ms=elapsed(), warnings=warnings)
