"""
reconcile.py — Ranking and reconciliation of the visible channel set.

Each poll cycle: score and sort the live runs, backfill up to the minimum
channel count, cap at the maximum, pick the focused prefix and decide whether
the result differs from what is on screen. An unchanged result returns the
previous visible set so stream embeds are not reloaded for fetch jitter.

Backfill priority (each stage stops at the target):
    1. runners visible last cycle but missing from the feed now
    2. hidden / cheated runners from the fallback pool
    3. always-show accounts from settings
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

from pacewatch.models import (
    SOURCE_ALWAYS_SHOW, SOURCE_HIDDEN, SOURCE_PREVIOUS, NormalizedRun,
)
from pacewatch.scoring import WORST, score_split, sort_by_score
from pacewatch.settings import Settings

logger = logging.getLogger("pacewatch.reconcile")


@dataclass
class ReconcileResult:
    visible: list[NormalizedRun]
    focused: list[str]
    changed: bool


def _placeholder(run: NormalizedRun, source: str) -> NormalizedRun:
    """Backfill entry: keeps identity and PB, drops progress."""
    return replace(run, milestone=None, elapsed_seconds=None,
                   score=WORST, source=source)


def _changed(previous: list[NormalizedRun], visible: list[NormalizedRun]) -> bool:
    if [r.live_account for r in previous] != [r.live_account for r in visible]:
        return True
    before = {r.live_account: r for r in previous}
    for run in visible:
        old = before.get(run.live_account)
        if old is None:
            continue
        if old.milestone != run.milestone or old.elapsed_seconds != run.elapsed_seconds:
            logger.debug("Split or time changed for %s: %s/%s -> %s/%s",
                         run.live_account, old.milestone, old.elapsed_seconds,
                         run.milestone, run.elapsed_seconds)
            return True
    return False


def reconcile(live: list[NormalizedRun],
              hidden: list[NormalizedRun],
              previous: list[NormalizedRun],
              settings: Settings,
              now_ms: Optional[int] = None,
              filter_active: Optional[bool] = None) -> ReconcileResult:
    """Compute the visible set for this cycle."""
    if filter_active is None:
        filter_active = settings.filter_active
    table = settings.pace_table()
    target = settings.min_total_channels
    limit = settings.max_total_channels

    for run in live:
        run.score = score_split(run.milestone, run.elapsed_seconds,
                                run.last_updated, now_ms, table)
    visible = sort_by_score(live)

    seen = {r.live_account.lower() for r in visible}

    def add(run: NormalizedRun) -> None:
        visible.append(run)
        seen.add(run.live_account.lower())

    filter_matched_nobody = filter_active and not live and not hidden
    if not filter_matched_nobody:
        wanted = {n.lower() for n in settings.filtered_runners}

        for run in previous:
            if len(visible) >= target:
                break
            if run.live_account.lower() in seen:
                continue
            if filter_active and (run.minecraft_name or "").lower() not in wanted:
                continue
            add(_placeholder(run, SOURCE_PREVIOUS))

        for run in hidden:
            if len(visible) >= target:
                break
            if run.live_account.lower() not in seen:
                add(_placeholder(run, SOURCE_HIDDEN))

        for account in settings.always_show_accounts:
            if len(visible) >= target:
                break
            if account.lower() not in seen:
                add(NormalizedRun(live_account=account.lower(), source=SOURCE_ALWAYS_SHOW))

    visible = visible[:limit]
    focused = [r.live_account for r in visible[:settings.max_focussed_channels]]

    changed = _changed(previous, visible) or filter_active
    if not changed:
        return ReconcileResult(
            visible=previous,
            focused=[r.live_account for r in previous[:settings.max_focussed_channels]],
            changed=False,
        )
    return ReconcileResult(visible=visible, focused=focused, changed=True)


@dataclass
class DashboardState:
    """What consumers currently display, threaded from cycle to cycle."""
    visible: list[NormalizedRun] = field(default_factory=list)
    focused: list[str] = field(default_factory=list)
    updated_at: Optional[str] = None
    cycles: int = 0

    def apply(self, result: ReconcileResult) -> "DashboardState":
        if not result.changed:
            return replace(self, cycles=self.cycles + 1)
        return DashboardState(
            visible=result.visible,
            focused=result.focused,
            updated_at=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            cycles=self.cycles + 1,
        )

    def to_dict(self) -> dict:
        return {
            "visible": [r.to_dict() for r in self.visible],
            "focused": list(self.focused),
            "updated_at": self.updated_at,
        }
