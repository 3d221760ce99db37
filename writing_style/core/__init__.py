"""Core module for configuration, errors, logging and resilience."""
