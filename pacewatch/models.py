"""
models.py — Raw feed records and normalized runner records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from pacewatch.scoring import WORST, Score
from pacewatch.splits import Milestone, MilestoneEvent, format_time

# Where a visible entry came from.
SOURCE_LIVE = "live"
SOURCE_PREVIOUS = "previous"
SOURCE_HIDDEN = "hidden"
SOURCE_ALWAYS_SHOW = "always_show"


@dataclass(frozen=True)
class RawRun:
    """One entry of the PaceMan live-runs feed, read-only."""
    event_list: tuple[MilestoneEvent, ...] = ()
    uuid: Optional[str] = None
    live_account: Optional[str] = None
    username: Optional[str] = None
    nickname: str = ""
    is_hidden: bool = False
    is_cheated: bool = False
    last_updated: Optional[int] = None
    pb: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "RawRun":
        user = data.get("user") or {}
        if not isinstance(user, dict):
            user = {}
        events = data.get("eventList") or []
        if not isinstance(events, list):
            events = []
        parsed = []
        for item in events:
            if isinstance(item, dict):
                event = MilestoneEvent.from_dict(item)
                if event is not None:
                    parsed.append(event)

        live_account = user.get("liveAccount")
        last_updated = _as_number(data.get("lastUpdated"))
        pb = _as_number(data.get("pb"))
        return cls(
            event_list=tuple(parsed),
            uuid=user.get("uuid"),
            live_account=str(live_account).strip() if live_account else None,
            username=user.get("username") or None,
            nickname=str(data.get("nickname") or "").strip(),
            is_hidden=bool(data.get("isHidden")),
            is_cheated=bool(data.get("isCheated")),
            last_updated=int(last_updated) if last_updated is not None else None,
            pb=float(pb) if pb is not None else None,
        )


def _as_number(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


@dataclass
class NormalizedRun:
    """A runner as shown on the dashboard.

    Rebuilt every poll cycle. Only `score` is updated between polls.
    """
    live_account: str
    display_name: str = ""
    minecraft_name: Optional[str] = None
    milestone: Optional[Milestone] = None
    elapsed_seconds: Optional[float] = None
    last_updated: Optional[int] = None
    personal_best_seconds: Optional[float] = None
    score: Score = field(default=WORST)
    source: str = SOURCE_LIVE

    @property
    def pb_key(self) -> str:
        return (self.minecraft_name or self.display_name or "").lower()

    @property
    def has_progress(self) -> bool:
        return (self.milestone is not None and bool(self.elapsed_seconds)
                and bool(self.last_updated))

    def to_dict(self) -> dict:
        return {
            "live_account": self.live_account,
            "display_name": self.display_name,
            "minecraft_name": self.minecraft_name,
            "milestone": self.milestone.value if self.milestone else None,
            "elapsed_seconds": self.elapsed_seconds,
            "elapsed": format_time(self.elapsed_seconds),
            "last_updated": self.last_updated,
            "personal_best_seconds": self.personal_best_seconds,
            "personal_best": format_time(self.personal_best_seconds),
            "score": self.score.to_dict(),
            "source": self.source,
        }
