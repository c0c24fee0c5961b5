"""
Query Utilities

Retry-wrapped remote queries and request chunking.
"""

from testall.query.chunk import chunked
from testall.query.helper import QueryHelper

__all__ = ["QueryHelper", "chunked"]
