"""Testall - resilient orchestration of large remote test runs."""

__version__ = "0.1.0"
