"""Persistence backends."""

from viralyze.services.stores.jsonl import JsonlStore, JsonlWorkSource

__all__ = ["JsonlStore", "JsonlWorkSource"]
