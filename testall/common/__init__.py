"""Shared infrastructure: logging, resilience and tracing."""
