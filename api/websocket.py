"""
websocket.py — WebSocket manager and broadcast for PaceWatch.

Server → Client:
    channels  visible set changed (full list + focused accounts)
    scores    re-score tick (order and scores only)

Single endpoint: ws://{host}:8080/ws
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from pacewatch.reconcile import DashboardState

logger = logging.getLogger("pacewatch.ws")

router = APIRouter()


def _channels_message(state: DashboardState) -> dict:
    return {"type": "channels", **state.to_dict()}


def _scores_message(state: DashboardState) -> dict:
    return {
        "type": "scores",
        "order": [r.live_account for r in state.visible],
        "scores": {r.live_account: r.score.to_dict() for r in state.visible},
    }


class ConnectionManager:
    """Tracks dashboard clients and fans out channel and score updates.

    The last payload of each message type is kept: a repeated score tick is
    not re-sent, and new clients get the latest channel list on connect.
    """

    def __init__(self):
        self.active: set[WebSocket] = set()
        self._last: dict[str, str] = {}

    @property
    def connection_count(self) -> int:
        return len(self.active)

    async def connect(self, ws: WebSocket, state: Optional[DashboardState] = None):
        await ws.accept()
        self.active.add(ws)
        logger.info("Dashboard client connected (%d total)", len(self.active))
        if state is not None:
            await ws.send_text(self._encode(_channels_message(state)))
        elif "channels" in self._last:
            await ws.send_text(self._last["channels"])

    def disconnect(self, ws: WebSocket):
        self.active.discard(ws)
        logger.info("Dashboard client disconnected (%d total)", len(self.active))

    @staticmethod
    def _encode(message: dict) -> str:
        return json.dumps(message, ensure_ascii=False)

    async def broadcast(self, message: dict) -> int:
        """Send to every client. Returns how many received it.

        Skipped when the payload equals the last one of its type.
        """
        data = self._encode(message)
        kind = message.get("type", "")
        if self._last.get(kind) == data:
            return 0
        self._last[kind] = data
        if not self.active:
            return 0

        clients = list(self.active)
        results = await asyncio.gather(*(ws.send_text(data) for ws in clients),
                                       return_exceptions=True)
        sent = 0
        for ws, result in zip(clients, results):
            if isinstance(result, Exception):
                logger.debug("Dropping dashboard client after send error: %s", result)
                self.disconnect(ws)
            else:
                sent += 1
        return sent

    async def broadcast_channels(self, state: DashboardState):
        await self.broadcast(_channels_message(state))

    async def broadcast_scores(self, state: DashboardState):
        await self.broadcast(_scores_message(state))


# Singleton manager
manager = ConnectionManager()


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    watcher = getattr(ws.app.state, "watcher", None)
    await manager.connect(ws, watcher.state if watcher is not None else None)
    try:
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(ws)
