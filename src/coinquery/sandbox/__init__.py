"""Restricted execution of model-generated data-fetch programs."""

from coinquery.sandbox.executor import ExecutionResult, SandboxExecutor
from coinquery.sandbox.guardrails import ProgramGuardrailConfig, ValidationResult, clean_program_text, validate_program

__all__ = [
    "ExecutionResult",
    "ProgramGuardrailConfig",
    "SandboxExecutor",
    "ValidationResult",
    "clean_program_text",
    "validate_program",
]
