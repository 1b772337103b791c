"""
rescore.py — Re-score the visible set between polls.

Uses the last poll's split, time and timestamp with the current wall clock so
runners close to their next split move up without waiting for a new fetch.
"""

from __future__ import annotations

from typing import Optional

from pacewatch.models import NormalizedRun
from pacewatch.scoring import now_ms, score_split, sort_by_score
from pacewatch.splits import DEFAULT_PACE_TABLE, PaceTable


def rescore(visible: list[NormalizedRun],
            current_ms: Optional[int] = None,
            table: PaceTable = DEFAULT_PACE_TABLE) -> list[NormalizedRun]:
    """Update scores in place and return the re-ordered list.

    Runs without split, time or timestamp keep their exact position; the
    others are re-sorted among the slots they occupy.
    """
    if current_ms is None:
        current_ms = now_ms()

    slots = [i for i, run in enumerate(visible) if run.has_progress]
    for i in slots:
        run = visible[i]
        run.score = score_split(run.milestone, run.elapsed_seconds,
                                run.last_updated, current_ms, table)

    ordered = list(visible)
    for slot, run in zip(slots, sort_by_score(visible[i] for i in slots)):
        ordered[slot] = run
    return ordered
