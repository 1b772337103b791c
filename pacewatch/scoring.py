"""
scoring.py — Adjusted pace score for cross-split ranking.

Lower score = better pace. A runner's score is their time factor against the
good split time minus the split's progression bonus. With a last-updated
timestamp the score also looks ahead to the next split, using wall-clock time
since the last update as extra run time, and keeps the larger (worse) of the
two values.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Iterable, Optional, TypeVar

from pacewatch.splits import DEFAULT_PACE_TABLE, Milestone, PaceTable, next_milestone

WORST_SCORE = math.inf

T = TypeVar("T")


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Score:
    value: float = WORST_SCORE
    used_milestone: Optional[Milestone] = None
    current_value: Optional[float] = None
    next_value: Optional[float] = None
    next_milestone: Optional[Milestone] = None
    estimated_elapsed_seconds: Optional[float] = None

    @property
    def is_worst(self) -> bool:
        return self.value == WORST_SCORE

    def to_dict(self) -> dict:
        # JSON has no infinity
        return {
            "value": None if self.is_worst else self.value,
            "used_milestone": self.used_milestone.value if self.used_milestone else None,
            "current_value": self.current_value,
            "next_value": self.next_value,
            "next_milestone": self.next_milestone.value if self.next_milestone else None,
            "estimated_elapsed_seconds": self.estimated_elapsed_seconds,
        }


WORST = Score()


def score_split(milestone: Optional[Milestone],
                elapsed_seconds: Optional[float],
                last_updated_ms: Optional[int] = None,
                current_ms: Optional[int] = None,
                table: PaceTable = DEFAULT_PACE_TABLE) -> Score:
    """Score a runner at `milestone` after `elapsed_seconds` of in-game time."""
    if milestone is None or not elapsed_seconds:
        return WORST

    current = elapsed_seconds / table.good_splits[milestone] - table.progression_bonus[milestone]
    if not last_updated_ms:
        return Score(value=current, used_milestone=milestone, current_value=current)

    upcoming = next_milestone(milestone)
    if upcoming is None:
        return Score(value=current, used_milestone=milestone, current_value=current)

    if current_ms is None:
        current_ms = now_ms()
    estimated = elapsed_seconds + (current_ms - last_updated_ms) / 1000
    projected = estimated / table.good_splits[upcoming] - table.progression_bonus[upcoming]

    if projected > current:
        return Score(value=projected, used_milestone=upcoming, current_value=current,
                     next_value=projected, next_milestone=upcoming,
                     estimated_elapsed_seconds=estimated)
    return Score(value=current, used_milestone=milestone, current_value=current,
                 next_value=projected, next_milestone=upcoming,
                 estimated_elapsed_seconds=estimated)


def sort_by_score(runs: Iterable[T]) -> list[T]:
    """Stable ascending sort on each item's `score.value`."""
    return sorted(runs, key=lambda run: run.score.value)
