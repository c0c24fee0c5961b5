"""Split sequences into fixed size chunks for size-capped requests."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TypeVar

T = TypeVar("T")


def chunked(items: Sequence[T], chunk_size: int) -> list[list[T]]:
    """
    Split ``items`` into consecutive lists of at most ``chunk_size`` elements.

    Raises:
        ValueError: If chunk_size is not positive
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [list(items[i : i + chunk_size]) for i in range(0, len(items), chunk_size)]
