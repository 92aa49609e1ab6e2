"""Anthropic-backed collaborators."""

from viralyze.services.providers.claude import ClaudeInferenceClient
from viralyze.services.providers.media import ClaudeMediaAnalyzer

__all__ = ["ClaudeInferenceClient", "ClaudeMediaAnalyzer"]
