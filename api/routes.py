"""
routes.py — REST API endpoints for PaceWatch.

All endpoints under /api/. Reads the watcher's published dashboard state and
manages settings persisted in SQLite.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ValidationError

from api.websocket import manager as ws_manager
from pacewatch.database import load_settings, save_settings, session
from pacewatch.errors import EventNotFoundError, FeedError
from pacewatch.scoring import score_split
from pacewatch.settings import Settings
from pacewatch.splits import Milestone, format_time

logger = logging.getLogger("pacewatch.api")

router = APIRouter()

# Reference splits for the pace table page: (split, seconds)
EXAMPLE_SPLITS = [
    (Milestone.NETHER, 60), (Milestone.NETHER, 90), (Milestone.NETHER, 120),
    (Milestone.S1, 90), (Milestone.S1, 120), (Milestone.S1, 180),
    (Milestone.S2, 180), (Milestone.S2, 240), (Milestone.S2, 300),
    (Milestone.BLIND, 300), (Milestone.BLIND, 360), (Milestone.BLIND, 420),
    (Milestone.STRONGHOLD, 330), (Milestone.STRONGHOLD, 420), (Milestone.STRONGHOLD, 540),
    (Milestone.END_ENTER, 360), (Milestone.END_ENTER, 420), (Milestone.END_ENTER, 540),
]


def _watcher(request: Request):
    watcher = getattr(request.app.state, "watcher", None)
    if watcher is None:
        raise HTTPException(503, "Watcher not initialized")
    return watcher


# ─── Pydantic models ─────────────────────────────────────────────────

class SettingsUpdate(BaseModel):
    max_focussed_channels: Optional[int] = None
    total_channels: Optional[int] = None
    min_total_channels: Optional[int] = None
    max_total_channels: Optional[int] = None
    filtered_runners: Optional[list[str] | str] = None
    always_show_accounts: Optional[list[str] | str] = None
    filtering_enabled: Optional[bool] = None
    include_cheated: Optional[bool] = None
    event_id: Optional[str] = None
    good_splits: Optional[dict[str, float]] = None
    progression_bonus: Optional[dict[str, float]] = None


# ═══════════════════════════════════════════════════════════════════════
# CHANNELS
# ═══════════════════════════════════════════════════════════════════════

@router.get("/channels")
async def get_channels(request: Request):
    return _watcher(request).state.to_dict()


@router.get("/pace-table")
async def get_pace_table(request: Request):
    """Pace table in use plus the reference splits in ranking order."""
    table = _watcher(request).settings.pace_table()
    examples = []
    for milestone, seconds in EXAMPLE_SPLITS:
        score = score_split(milestone, seconds, table=table)
        examples.append({
            "milestone": milestone.value,
            "elapsed_seconds": seconds,
            "elapsed": format_time(seconds),
            "score": round(score.value, 4),
        })
    examples.sort(key=lambda e: e["score"])
    return {"table": table.to_dict(), "examples": examples}


# ═══════════════════════════════════════════════════════════════════════
# SETTINGS
# ═══════════════════════════════════════════════════════════════════════

@router.get("/settings")
async def get_settings(request: Request):
    return _watcher(request).settings.model_dump()


@router.put("/settings")
async def update_settings(request: Request, body: SettingsUpdate):
    watcher = _watcher(request)
    fields = body.model_dump(exclude_unset=True)
    merged = watcher.settings.model_dump()
    # Limits derived from total_channels are re-resolved unless given explicitly
    if "total_channels" in fields:
        merged.pop("min_total_channels", None)
        merged.pop("max_total_channels", None)
    merged.update(fields)
    try:
        settings = Settings(**merged)
    except ValidationError as e:
        raise HTTPException(422, str(e))

    # Applied first: an unknown event is rejected and never persisted
    try:
        await watcher.update_settings(settings)
    except EventNotFoundError as e:
        raise HTTPException(404, str(e))

    with session() as conn:
        save_settings(conn, settings)
    return settings.model_dump()


def load_persisted_settings() -> Settings:
    with session() as conn:
        return load_settings(conn)


# ═══════════════════════════════════════════════════════════════════════
# WATCHER
# ═══════════════════════════════════════════════════════════════════════

@router.post("/watcher/start")
async def watcher_start(request: Request):
    watcher = _watcher(request)
    await watcher.start()
    logger.info("Watcher started")
    return {"ok": True, "status": watcher.status}


@router.post("/watcher/stop")
async def watcher_stop(request: Request):
    watcher = _watcher(request)
    await watcher.stop()
    logger.info("Watcher stopped")
    return {"ok": True, "status": watcher.status}


@router.post("/watcher/refresh")
async def watcher_refresh(request: Request):
    """Run one poll cycle now."""
    watcher = _watcher(request)
    try:
        published = await watcher.refresh()
    except EventNotFoundError as e:
        raise HTTPException(404, str(e))
    except FeedError as e:
        raise HTTPException(502, str(e))
    return {"ok": True, "changed": published, **watcher.state.to_dict()}


@router.get("/status")
async def system_status(request: Request):
    return {
        **_watcher(request).get_status(),
        "ws_clients": ws_manager.connection_count,
    }
