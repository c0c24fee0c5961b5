"""
Remote Executors

Implementations of the RemoteExecutor and TestCatalog protocols.
"""

from testall.executor.http import HttpRemoteExecutor
from testall.executor.memory import InMemoryRemoteExecutor

__all__ = ["HttpRemoteExecutor", "InMemoryRemoteExecutor"]
