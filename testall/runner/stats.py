"""
Run Progress Statistics

Immutable tracker used to decide when a test run has stopped making
progress. Every update returns a new value, so a sequence of completed
counts can be replayed directly in tests.
"""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class RunStats:
    """
    Progress state of a test run.

    Attributes:
        progress_threshold: Consecutive polls without change before a hang is assumed
        last_completed_count: Completed method count seen on the last poll
        stall_count: Consecutive polls for which the count has not changed
        reset_count: Number of times the run has been reset after a hang
    """

    progress_threshold: int
    last_completed_count: int = 0
    stall_count: int = 0
    reset_count: int = 0

    @classmethod
    def initial(cls, progress_threshold: int) -> RunStats:
        return cls(progress_threshold=progress_threshold)

    def update(self, completed_count: int) -> RunStats:
        """Record a poll. An unchanged count extends the stall, any change clears it."""
        if completed_count != self.last_completed_count:
            return replace(self, last_completed_count=completed_count, stall_count=0)
        return replace(self, stall_count=self.stall_count + 1)

    def reset(self) -> RunStats:
        """Start tracking a resubmitted run, counting the reset."""
        return replace(
            self,
            last_completed_count=0,
            stall_count=0,
            reset_count=self.reset_count + 1,
        )

    @property
    def is_hanging(self) -> bool:
        return self.stall_count >= self.progress_threshold
