"""
Commands

Top-level run orchestration.
"""

from testall.command.testall import Testall, find_missing

__all__ = ["Testall", "find_missing"]
