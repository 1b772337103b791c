"""
PaceWatch — Server entry point.

Starts the FastAPI server with the REST API, the WebSocket endpoint and the
PaceMan watcher running in the background.
Usage:
    python server.py
    # or: uvicorn server:app --host 0.0.0.0 --port 8080 --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.routes import load_persisted_settings, router as api_router
from api.websocket import router as ws_router, manager as ws_manager
from pacewatch.settings import load_config
from pacewatch.watcher import PaceWatcher

logger = logging.getLogger("pacewatch")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: load settings and start watching. Shutdown: stop timers."""
    config = load_config()
    settings = load_persisted_settings()
    watcher = PaceWatcher(
        config=config,
        settings=settings,
        on_update=ws_manager.broadcast_channels,
        on_rescore=ws_manager.broadcast_scores,
    )
    app.state.watcher = watcher
    await watcher.start()
    logger.info("Watching %s every %.0fs", settings.event_id or config.feed_url,
                config.poll_interval)

    yield

    # Shutdown
    await watcher.aclose()


app = FastAPI(title="PaceWatch", lifespan=lifespan)

# API + WebSocket routers
app.include_router(api_router, prefix="/api")
app.include_router(ws_router)


# ─── Main ────────────────────────────────────────────────────────────

PORT = 8080


if __name__ == "__main__":
    import sys
    import uvicorn

    logging.basicConfig(
        level=logging.DEBUG if "--debug" in sys.argv else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("server:app", host="0.0.0.0", port=PORT,
                reload="--dev" in sys.argv, log_level="warning")
