"""
feed.py — PaceMan live-runs client and feed normalization.

Fetches the public live-runs feed (or the backend's event-scoped variant),
splits it into a primary pool of live runs and a fallback pool of hidden or
cheated runs, applies the runner filter and maps every entry to a
NormalizedRun.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from pacewatch.errors import EventNotFoundError, FeedError
from pacewatch.models import SOURCE_HIDDEN, SOURCE_LIVE, NormalizedRun, RawRun
from pacewatch.settings import (
    DEFAULT_BACKEND_URL, DEFAULT_HTTP_TIMEOUT, PACEMAN_LIVE_URL, Settings,
)
from pacewatch.splits import extract_split

logger = logging.getLogger("pacewatch.feed")

USER_AGENT = "PaceWatch/1.0"


class FeedClient:
    """Async client for the live-runs feed."""

    def __init__(self, feed_url: str = PACEMAN_LIVE_URL,
                 backend_url: str = DEFAULT_BACKEND_URL,
                 timeout: float = DEFAULT_HTTP_TIMEOUT,
                 client: Optional[httpx.AsyncClient] = None):
        self.feed_url = feed_url
        self.backend_url = backend_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_live_runs(self) -> list[RawRun]:
        """Fetch the public feed. Raises FeedError on any failure."""
        try:
            resp = await self._client.get(self.feed_url)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise FeedError(f"Live runs fetch failed: {e}") from e

        if not isinstance(data, list):
            raise FeedError(f"Unexpected live runs payload: {type(data).__name__}")
        return _parse_runs(data)

    async def fetch_event_runs(self, event_id: str) -> list[RawRun]:
        """Fetch live runs scoped to an event from the backend.

        May contain placeholder entries for whitelisted runners who are live
        but not yet in the pace feed; those carry an empty event list and a
        pre-populated pb. Raises EventNotFoundError for unknown events.
        """
        url = f"{self.backend_url}/paceman/event/{event_id}/liveruns"
        try:
            resp = await self._client.get(url)
        except httpx.HTTPError as e:
            raise FeedError(f"Event runs fetch failed: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = None

        if isinstance(data, dict) and data.get("error"):
            raise EventNotFoundError(event_id, str(data["error"]))
        if resp.status_code == 404:
            raise EventNotFoundError(event_id)
        if resp.is_error:
            raise FeedError(f"Event runs fetch failed: HTTP {resp.status_code}")
        if not isinstance(data, list):
            raise FeedError(f"Unexpected event runs payload: {type(data).__name__}")
        return _parse_runs(data)

    async def fetch(self, settings: Settings) -> list[RawRun]:
        if settings.event_id:
            return await self.fetch_event_runs(settings.event_id)
        return await self.fetch_live_runs()


def _parse_runs(data: list) -> list[RawRun]:
    runs = []
    for item in data:
        if not isinstance(item, dict):
            logger.debug("Skipping non-object feed entry: %r", item)
            continue
        runs.append(RawRun.from_dict(item))
    return runs


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

@dataclass
class FeedSnapshot:
    live: list[NormalizedRun] = field(default_factory=list)
    hidden: list[NormalizedRun] = field(default_factory=list)
    filter_active: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.live and not self.hidden


def to_normalized(run: RawRun, source: str = SOURCE_LIVE) -> NormalizedRun:
    split = extract_split(list(run.event_list))
    return NormalizedRun(
        live_account=run.live_account or "",
        display_name=run.username or run.live_account or "",
        minecraft_name=run.nickname or None,
        milestone=split.milestone,
        elapsed_seconds=split.elapsed_seconds,
        last_updated=run.last_updated,
        personal_best_seconds=run.pb,
        source=source,
    )


def normalize(raw_runs: list[RawRun], settings: Settings) -> FeedSnapshot:
    """Partition, filter and normalize one feed fetch (PBs not looked up)."""
    streaming = [r for r in raw_runs if r.live_account]

    def is_primary(run: RawRun) -> bool:
        if run.is_hidden:
            return False
        return settings.include_cheated or not run.is_cheated

    live_runs = [r for r in streaming if is_primary(r)]
    hidden_runs = [r for r in streaming if not is_primary(r)]

    if settings.filter_active:
        wanted = {name.lower() for name in settings.filtered_runners}
        live_runs = [r for r in live_runs if r.nickname.lower() in wanted]
        hidden_runs = [r for r in hidden_runs if r.nickname.lower() in wanted]
        logger.debug("Filter %s matched %d live, %d hidden",
                     settings.filtered_runners, len(live_runs), len(hidden_runs))

    return FeedSnapshot(
        live=[to_normalized(r, SOURCE_LIVE) for r in live_runs],
        hidden=[to_normalized(r, SOURCE_HIDDEN) for r in hidden_runs],
        filter_active=settings.filter_active,
    )
