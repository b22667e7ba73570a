"""Lorekeeper: continuous pattern learning and retrieval for agent orchestration."""

__version__ = "0.1.0"
