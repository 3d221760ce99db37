"""Incremental writing style matrix engine."""

__version__ = "0.1.0"
