from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Sequence, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetentionPolicy:
    """Count and age bound for an append-only history."""

    cap: int
    max_age_ms: float

    def prune(self, entries: Sequence[T], now: float, at: Callable[[T], float]) -> List[T]:
        # Keep the most recent entries; oldest go first.
        kept = [e for e in entries if now - at(e) <= self.max_age_ms]
        if self.cap <= 0:
            return []
        if len(kept) > self.cap:
            kept = kept[-self.cap :]
        return kept
