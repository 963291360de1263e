"""Cascading player-data integrity engine."""

__version__ = "0.1.0"
