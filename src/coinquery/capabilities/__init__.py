"""Capability registry and the concrete catalog exposed to generated programs."""

from coinquery.capabilities.catalog import TIME_PERIODS, build_registry
from coinquery.capabilities.registry import Capability, CapabilityNamespace, CapabilityRegistry

__all__ = [
    "Capability",
    "CapabilityNamespace",
    "CapabilityRegistry",
    "TIME_PERIODS",
    "build_registry",
]
