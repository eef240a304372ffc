"""
Caller deadline propagated to every suspension point of a pipeline round.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import time
from typing import Optional


@dataclass
class Deadline:
    """Track the time left for an aggregation or search round."""

    total_s: float
    start_time: float = field(default_factory=time.perf_counter)

    @property
    def elapsed_s(self) -> float:
        return time.perf_counter() - self.start_time

    @property
    def remaining_s(self) -> float:
        return max(0.0, self.total_s - self.elapsed_s)

    @property
    def expired(self) -> bool:
        return self.remaining_s <= 0.0

    def cap(self, timeout_s: Optional[float]) -> float:
        """Clamp a per-attempt timeout to the time left."""
        if timeout_s is None:
            return self.remaining_s
        return min(timeout_s, self.remaining_s)


def earliest(*deadlines: Optional[Deadline]) -> Optional[Deadline]:
    """The deadline with the least time remaining."""
    present = [d for d in deadlines if d is not None]
    if not present:
        return None
    return min(present, key=lambda d: d.remaining_s)
