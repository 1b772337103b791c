"""
splits.py — Milestones, pace table and split extraction.

A runner's PaceMan event list is cumulative, so the current split is found by
testing milestones latest-first and taking the first one present.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Milestone(str, Enum):
    NETHER = "NETHER"
    S1 = "S1"
    S2 = "S2"
    BLIND = "BLIND"
    STRONGHOLD = "STRONGHOLD"
    END_ENTER = "END ENTER"
    FINISH = "FINISH"


# Progression order: declaration order of the enum.
SPLIT_ORDER: tuple[Milestone, ...] = tuple(Milestone)

EVENT_ENTER_NETHER = "rsg.enter_nether"
EVENT_ENTER_BASTION = "rsg.enter_bastion"
EVENT_ENTER_FORTRESS = "rsg.enter_fortress"
EVENT_FIRST_PORTAL = "rsg.first_portal"
EVENT_ENTER_STRONGHOLD = "rsg.enter_stronghold"
EVENT_ENTER_END = "rsg.enter_end"

# Reference "good" time in seconds for reaching each split.
DEFAULT_GOOD_SPLITS: dict[Milestone, float] = {
    Milestone.NETHER: 90,
    Milestone.S1: 120,
    Milestone.S2: 240,
    Milestone.BLIND: 300,
    Milestone.STRONGHOLD: 400,
    Milestone.END_ENTER: 420,
    Milestone.FINISH: 600,
}

# Rewards later splits; subtracted from the time factor.
DEFAULT_PROGRESSION_BONUS: dict[Milestone, float] = {
    Milestone.NETHER: -0.1,
    Milestone.S1: 0.1,
    Milestone.S2: 0.7,
    Milestone.BLIND: 0.8,
    Milestone.STRONGHOLD: 0.85,
    Milestone.END_ENTER: 0.9,
    Milestone.FINISH: 1.0,
}


def parse_milestone(value) -> Optional[Milestone]:
    """Accept 'END ENTER', 'END_ENTER', 'end enter' or a Milestone."""
    if value is None or value == "":
        return None
    if isinstance(value, Milestone):
        return value
    text = str(value).strip().upper().replace("_", " ")
    for milestone in Milestone:
        if milestone.value == text:
            return milestone
    return None


@dataclass(frozen=True)
class PaceTable:
    good_splits: dict[Milestone, float] = field(
        default_factory=lambda: dict(DEFAULT_GOOD_SPLITS))
    progression_bonus: dict[Milestone, float] = field(
        default_factory=lambda: dict(DEFAULT_PROGRESSION_BONUS))

    @classmethod
    def with_overrides(cls, good_splits: Optional[dict] = None,
                       progression_bonus: Optional[dict] = None) -> "PaceTable":
        """Build a table from the defaults, replacing any valid overrides.

        Keys may be milestone names in any accepted spelling. Unknown keys and
        non-numeric values are ignored. Good split times must be positive.
        """
        good = dict(DEFAULT_GOOD_SPLITS)
        bonus = dict(DEFAULT_PROGRESSION_BONUS)
        for key, value in (good_splits or {}).items():
            milestone = parse_milestone(key)
            number = _as_float(value)
            if milestone is not None and number is not None and number > 0:
                good[milestone] = number
        for key, value in (progression_bonus or {}).items():
            milestone = parse_milestone(key)
            number = _as_float(value)
            if milestone is not None and number is not None:
                bonus[milestone] = number
        return cls(good_splits=good, progression_bonus=bonus)

    def to_dict(self) -> dict:
        return {
            m.value: {
                "good_split_seconds": self.good_splits[m],
                "progression_bonus": self.progression_bonus[m],
            }
            for m in SPLIT_ORDER
        }


DEFAULT_PACE_TABLE = PaceTable()


def _as_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def next_milestone(milestone: Optional[Milestone]) -> Optional[Milestone]:
    """Successor in the progression, or None at FINISH / for None."""
    if milestone is None:
        return None
    index = SPLIT_ORDER.index(milestone)
    if index == len(SPLIT_ORDER) - 1:
        return None
    return SPLIT_ORDER[index + 1]


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MilestoneEvent:
    event_id: str
    igt: Optional[int] = None
    rta: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> Optional["MilestoneEvent"]:
        event_id = data.get("eventId")
        if not isinstance(event_id, str):
            return None
        return cls(
            event_id=event_id,
            igt=_as_ms(data.get("igt")),
            rta=_as_ms(data.get("rta")),
        )

    @property
    def time_ms(self) -> Optional[int]:
        return self.igt if self.igt is not None else self.rta


def _as_ms(value) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


@dataclass(frozen=True)
class SplitResult:
    milestone: Optional[Milestone] = None
    elapsed_seconds: Optional[float] = None


def _first_time(events: list[MilestoneEvent], event_id: str) -> Optional[int]:
    for event in events:
        if event.event_id == event_id and event.time_ms is not None:
            return event.time_ms
    return None


def extract_split(events: list[MilestoneEvent]) -> SplitResult:
    """Current split and in-game time (seconds) of a runner's event list."""
    for event_id, milestone in (
        (EVENT_ENTER_END, Milestone.END_ENTER),
        (EVENT_ENTER_STRONGHOLD, Milestone.STRONGHOLD),
        (EVENT_FIRST_PORTAL, Milestone.BLIND),
    ):
        ms = _first_time(events, event_id)
        if ms is not None:
            return SplitResult(milestone, ms / 1000)

    fortress = _first_time(events, EVENT_ENTER_FORTRESS)
    bastion = _first_time(events, EVENT_ENTER_BASTION)
    if fortress is not None and bastion is not None:
        # The later structure gates progression.
        return SplitResult(Milestone.S2, max(fortress, bastion) / 1000)
    if fortress is not None or bastion is not None:
        ms = fortress if fortress is not None else bastion
        return SplitResult(Milestone.S1, ms / 1000)

    ms = _first_time(events, EVENT_ENTER_NETHER)
    if ms is not None:
        return SplitResult(Milestone.NETHER, ms / 1000)

    return SplitResult()


def format_time(seconds: Optional[float]) -> str:
    """Format seconds as M:SS. Empty for None or zero."""
    if not seconds:
        return ""
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}:{secs:02d}"
