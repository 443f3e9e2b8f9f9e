"""Orchestration of the compile, execute and synthesize stages."""

from coinquery.orchestrator.runtime import FALLBACK_ANALYSIS, AnalysisOrchestrator, Stage, build_orchestrator

__all__ = ["FALLBACK_ANALYSIS", "AnalysisOrchestrator", "Stage", "build_orchestrator"]
