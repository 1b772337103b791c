"""
watcher.py — Async PaceMan polling and live re-scoring background tasks.

Three asyncio tasks run within FastAPI:
    poll loop     fetch → normalize → PB enrich → reconcile (every 10 s);
                  hidden-pool PBs only once a run is backfilled
    rescore loop  re-score the visible set with the wall clock (every 1 s)
    sweep loop    evict expired PB cache entries (every half PB TTL)

A failed fetch only aborts its own cycle; the last published state stays.
An unknown event pauses polling until the event id changes.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from pacewatch.errors import EventNotFoundError, FeedError
from pacewatch.feed import FeedClient, normalize
from pacewatch.models import SOURCE_HIDDEN, NormalizedRun
from pacewatch.pb import PbCache, PbClient, PbEnricher
from pacewatch.reconcile import DashboardState, reconcile
from pacewatch.rescore import rescore
from pacewatch.settings import Settings, WatcherConfig

logger = logging.getLogger("pacewatch.watcher")

StateHandler = Callable[[DashboardState], Awaitable[None]]


class PaceWatcher:
    """Owns the dashboard state and the timers that update it."""

    def __init__(self, config: Optional[WatcherConfig] = None,
                 settings: Optional[Settings] = None,
                 feed: Optional[FeedClient] = None,
                 enricher: Optional[PbEnricher] = None,
                 on_update: Optional[StateHandler] = None,
                 on_rescore: Optional[StateHandler] = None):
        self.config = config or WatcherConfig()
        self.settings = settings or Settings()
        self.feed = feed or FeedClient(
            feed_url=self.config.feed_url,
            backend_url=self.config.backend_url,
            timeout=self.config.http_timeout,
        )
        self.enricher = enricher or PbEnricher(
            PbClient(self.config.backend_url, timeout=self.config.http_timeout),
            PbCache(ttl=self.config.pb_cache_ttl),
        )
        self.on_update = on_update
        self.on_rescore = on_rescore
        self.state = DashboardState()

        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._cycle_lock = asyncio.Lock()
        self._status = "Stopped"
        self._error_count = 0
        self._skipped_cycles = 0
        self._last_poll: Optional[str] = None
        self._last_error: Optional[str] = None

    @property
    def status(self) -> str:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> dict:
        return {
            "is_running": self._running,
            "status": self._status,
            "cycles": self.state.cycles,
            "error_count": self._error_count,
            "skipped_cycles": self._skipped_cycles,
            "last_poll": self._last_poll,
            "last_error": self._last_error,
            "visible_count": len(self.state.visible),
            "event_id": self.settings.event_id,
            "pb_cache": self.enricher.cache.stats(),
        }

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._status = "Starting..."
        self._tasks = [
            asyncio.create_task(self._poll_loop()),
            asyncio.create_task(self._rescore_loop()),
            asyncio.create_task(self._sweep_loop()),
        ]

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        self._status = "Stopped"

    async def aclose(self) -> None:
        """Stop the timers and close HTTP clients."""
        await self.stop()
        await self.feed.aclose()
        close = getattr(self.enricher.lookup, "aclose", None)
        if close is not None:
            await close()

    async def update_settings(self, settings: Settings) -> None:
        """Apply new settings and refresh immediately.

        Waits for a cycle already in flight, since that one read the old
        settings. An unknown event id restores the previous settings and
        raises EventNotFoundError.
        """
        previous, self.settings = self.settings, settings
        logger.info("Settings updated: %s", settings.model_dump())
        try:
            await self.refresh()
        except EventNotFoundError:
            self.settings = previous
            raise
        except FeedError as e:
            logger.warning("Refresh after settings change failed: %s", e)

    # ─── Poll cycle ──────────────────────────────────────────────────────

    async def poll_once(self) -> bool:
        """Run one timer-driven cycle. Returns True if state was published.

        Skips (returns False) when a cycle is already in flight. Raises
        FeedError on fetch failures and EventNotFoundError for unknown events.
        """
        if self._cycle_lock.locked():
            self._skipped_cycles += 1
            logger.debug("Poll cycle already running, skipping")
            return False
        return await self.refresh()

    async def refresh(self) -> bool:
        """Run one cycle now, after any cycle already in flight."""
        async with self._cycle_lock:
            settings = self.settings
            raw_runs = await self.feed.fetch(settings)
            snapshot = normalize(raw_runs, settings)

            live = await self.enricher.enrich_all(snapshot.live)
            result = reconcile(live, snapshot.hidden, self.state.visible, settings,
                               filter_active=snapshot.filter_active)
            if result.changed:
                result.visible = await self._enrich_backfill(result.visible)
            self.state = self.state.apply(result)
            self._last_poll = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

            if not result.changed:
                return False
            logger.info("Visible channels: %s (focused: %s)",
                        [r.live_account for r in result.visible], result.focused)

            # Published under the lock so a newer cycle is never overwritten
            if self.on_update:
                try:
                    await self.on_update(self.state)
                except Exception as e:
                    logger.error("Error publishing channel update: %s", e)
        return True

    async def _enrich_backfill(self, visible: list[NormalizedRun]) -> list[NormalizedRun]:
        """Look up PBs only for hidden-pool runs that made it on screen."""
        slots = [i for i, run in enumerate(visible) if run.source == SOURCE_HIDDEN]
        if not slots:
            return visible
        enriched = await self.enricher.enrich_all([visible[i] for i in slots])
        visible = list(visible)
        for slot, run in zip(slots, enriched):
            visible[slot] = run
        return visible

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.poll_once()
                self._status = "Online"
                self._error_count = 0
                self._last_error = None

            except asyncio.CancelledError:
                break
            except EventNotFoundError as e:
                self._error_count += 1
                self._last_error = str(e)
                self._status = "Unknown event"
                logger.error("%s; polling paused until the event changes", e)
                while self._running and self.settings.event_id == e.event_id:
                    await asyncio.sleep(self.config.poll_interval)
                continue
            except Exception as e:
                self._error_count += 1
                self._last_error = str(e)
                self._status = f"Error ({self._error_count})"
                logger.warning("Poll error: %s", e)

                # Back off on repeated errors
                if self._error_count >= 10:
                    await asyncio.sleep(min(self.config.poll_interval * self._error_count, 60))

            await asyncio.sleep(self.config.poll_interval)

    # ─── Re-score and cache sweep ────────────────────────────────────────

    async def rescore_once(self) -> None:
        if not self.state.visible:
            return
        self.state.visible = rescore(self.state.visible,
                                     table=self.settings.pace_table())
        if self.on_rescore:
            try:
                await self.on_rescore(self.state)
            except Exception as e:
                logger.error("Error publishing scores: %s", e)

    async def _rescore_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.rescore_interval)
            try:
                await self.rescore_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Rescore failed: %s", e)

    async def _sweep_loop(self) -> None:
        cache = self.enricher.cache
        while self._running:
            await asyncio.sleep(cache.sweep_interval)
            cache.sweep()
