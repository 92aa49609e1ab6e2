"""Bulk enrichment pipeline."""

from viralyze.pipeline.orchestrator import Orchestrator

__all__ = ["Orchestrator"]
