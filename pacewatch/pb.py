"""
pb.py — Personal-best lookup client, TTL cache and run enrichment.

The lookup goes through the backend proxy (`/paceman/pb?username=`). Results,
including "no PB", are cached per lowercased runner name for one hour. The
watcher sweeps expired entries every half TTL.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional

import httpx

from pacewatch.models import NormalizedRun
from pacewatch.settings import DEFAULT_BACKEND_URL, DEFAULT_HTTP_TIMEOUT, DEFAULT_PB_CACHE_TTL

logger = logging.getLogger("pacewatch.pb")

PbLookup = Callable[[str], Awaitable[Optional[float]]]


class PbClient:
    """Async client for the backend PB proxy."""

    def __init__(self, backend_url: str = DEFAULT_BACKEND_URL,
                 timeout: float = DEFAULT_HTTP_TIMEOUT,
                 client: Optional[httpx.AsyncClient] = None):
        self.backend_url = backend_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": "PaceWatch/1.0"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __call__(self, username: str) -> Optional[float]:
        """PB in seconds, or None when unknown or the lookup failed."""
        try:
            resp = await self._client.get(
                f"{self.backend_url}/paceman/pb", params={"username": username})
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("PB lookup failed for %s: %s", username, e)
            return None

        if not isinstance(data, dict):
            return None
        if data.get("error"):
            logger.warning("PB lookup error for %s: %s", username, data["error"])
            return None
        try:
            return float(data["pb"]) if data.get("pb") is not None else None
        except (TypeError, ValueError):
            return None


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PbEntry:
    value: Optional[float]
    timestamp: float


class PbCache:
    """Per-runner PB cache with a fixed TTL (seconds) and an injectable clock."""

    def __init__(self, ttl: float = DEFAULT_PB_CACHE_TTL,
                 clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self.clock = clock
        self._entries: dict[str, PbEntry] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @property
    def sweep_interval(self) -> float:
        return self.ttl / 2

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def _fresh(self, entry: PbEntry, now: float) -> bool:
        return entry.timestamp > now - self.ttl

    def get(self, key: str) -> tuple[bool, Optional[float]]:
        """Return (hit, value). Counts the hit or miss."""
        entry = self._entries.get(key)
        if entry is not None and self._fresh(entry, self.clock()):
            self.hits += 1
            return True, entry.value
        self.misses += 1
        return False, None

    def put(self, key: str, value: Optional[float]) -> None:
        self._entries[key] = PbEntry(value, self.clock())

    def sweep(self) -> int:
        """Evict expired entries. Returns how many were removed."""
        now = self.clock()
        expired = [k for k, e in self._entries.items() if not self._fresh(e, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("PB cache sweep: removed %d expired, %d left",
                        len(expired), len(self._entries))
        return len(expired)

    def stats(self) -> dict:
        return {
            "entries": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hit_rate, 3),
        }


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------

class PbEnricher:
    """Fills in PBs through the cache; concurrent requests for one key share a lookup."""

    def __init__(self, lookup: PbLookup, cache: Optional[PbCache] = None):
        self.lookup = lookup
        self.cache = cache if cache is not None else PbCache()
        self._pending: dict[str, asyncio.Task] = {}

    async def personal_best(self, key: str) -> Optional[float]:
        if not key:
            return None
        task = self._pending.get(key)
        if task is None:
            hit, value = self.cache.get(key)
            if hit:
                return value
            task = asyncio.ensure_future(self._fetch(key))
            self._pending[key] = task
            task.add_done_callback(lambda _: self._pending.pop(key, None))
        return await asyncio.shield(task)

    async def _fetch(self, key: str) -> Optional[float]:
        try:
            value = await self.lookup(key)
        except Exception as e:
            # Not cached, retried next cycle.
            logger.warning("PB lookup raised for %s: %s", key, e)
            return None
        self.cache.put(key, value)
        logger.debug("PB for %s: %s", key, value)
        return value

    async def enrich(self, run: NormalizedRun) -> NormalizedRun:
        """Copy of `run` with its PB filled in. Never raises for lookup failures."""
        if run.personal_best_seconds is not None:
            return run
        pb = await self.personal_best(run.pb_key)
        return replace(run, personal_best_seconds=pb)

    async def enrich_all(self, runs: list[NormalizedRun]) -> list[NormalizedRun]:
        """Enrich concurrently; order is preserved."""
        if not runs:
            return []
        return list(await asyncio.gather(*(self.enrich(r) for r in runs)))
