"""
Rerun Pattern Matching

Classifies failure messages that indicate transient contention on the
remote service (row locks, deadlocks) rather than a genuine test defect.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path
from re import Pattern

logger = logging.getLogger(__name__)

DEFAULT_RERUN_PATTERNS: tuple[str, ...] = (
    "UNABLE_TO_LOCK_ROW",
    "deadlock detected while waiting for resource",
)

DEFAULT_PATTERNS_FILE = ".testRerun"


class ResultClassifier:
    """
    Tests failure messages against a set of regular expressions.

    Patterns that fail to compile are logged and left out. With no valid
    patterns nothing matches.
    """

    def __init__(self, patterns: Iterable[str]):
        compiled: list[Pattern[str]] = []
        for pattern in patterns:
            try:
                compiled.append(re.compile(pattern))
            except re.error as e:
                logger.warning(f"Failure test result regex '{pattern}' could not be compiled: {e}")
        self._patterns = tuple(compiled)

    @property
    def patterns(self) -> tuple[str, ...]:
        return tuple(p.pattern for p in self._patterns)

    def does_match_any(self, text: str | None) -> bool:
        """True if the text matches any of the patterns."""
        if not text:
            return False
        return any(p.search(text) for p in self._patterns)

    @classmethod
    def create(
        cls,
        start_dir: str | Path | None = None,
        file_name: str = DEFAULT_PATTERNS_FILE,
    ) -> ResultClassifier:
        """
        Build a classifier from the nearest patterns file.

        Searches ``start_dir`` (default: the working directory) and then each
        parent directory for ``file_name``. One pattern per line; blank lines
        and lines starting with ``#`` are ignored. Falls back to the built-in
        row lock and deadlock patterns when no file is found.
        """
        patterns_file = find_patterns_file(Path(start_dir or Path.cwd()), file_name)
        if patterns_file is None:
            return cls(DEFAULT_RERUN_PATTERNS)

        logger.info(f"Loading rerun patterns from {patterns_file}")
        lines = patterns_file.read_text(encoding="utf-8").splitlines()
        return cls(line for line in lines if line.strip() and not line.startswith("#"))


def find_patterns_file(directory: Path, file_name: str = DEFAULT_PATTERNS_FILE) -> Path | None:
    """Walk from ``directory`` to the filesystem root, returning the first match."""
    current = directory.resolve()
    while True:
        candidate = current / file_name
        if candidate.is_file():
            return candidate
        if current.parent == current:
            return None
        current = current.parent
