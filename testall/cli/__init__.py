"""Testall command-line interface."""
