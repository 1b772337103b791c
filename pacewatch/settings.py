"""
settings.py — Dashboard settings and service configuration.

`Settings` holds what a viewer configures (channel counts, runner filter,
always-show list). `WatcherConfig` holds where and how often to poll, read
from PACEWATCH_* environment variables.
"""

from __future__ import annotations

import os
from typing import Optional, Union

from pydantic import BaseModel, field_validator, model_validator

from pacewatch.splits import PaceTable

PACEMAN_LIVE_URL = "https://paceman.gg/api/ars/liveruns"
DEFAULT_BACKEND_URL = "http://localhost:3001"
DEFAULT_POLL_INTERVAL = 10.0  # seconds between feed polls
DEFAULT_RESCORE_INTERVAL = 1.0  # seconds between re-scores
DEFAULT_PB_CACHE_TTL = 60 * 60.0  # seconds
DEFAULT_HTTP_TIMEOUT = 10.0


def parse_runner_list(value: Union[str, list, None]) -> list[str]:
    """Parse a runner list given as multi-line text or a list.

    Lines in PacemanBot export format (``username:1/2/3``) keep only the
    username before the first colon. Blank lines are dropped.
    """
    if value is None:
        return []
    if isinstance(value, str):
        lines = value.splitlines()
    else:
        lines = [str(v) for v in value if v is not None]
    names = []
    for line in lines:
        name = line.split(":", 1)[0].strip()
        if name:
            names.append(name)
    return names


class Settings(BaseModel):
    max_focussed_channels: int = 1
    total_channels: int = 3
    min_total_channels: Optional[int] = None
    max_total_channels: Optional[int] = None
    filtered_runners: list[str] = []
    always_show_accounts: list[str] = []
    filtering_enabled: bool = True
    include_cheated: bool = False
    event_id: Optional[str] = None
    good_splits: dict[str, float] = {}
    progression_bonus: dict[str, float] = {}

    @field_validator("filtered_runners", "always_show_accounts", mode="before")
    @classmethod
    def _parse_names(cls, value):
        return parse_runner_list(value)

    @field_validator("max_focussed_channels", "total_channels")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @model_validator(mode="after")
    def _resolve_channel_limits(self) -> "Settings":
        if self.min_total_channels is None:
            self.min_total_channels = self.total_channels
        if self.max_total_channels is None:
            self.max_total_channels = max(self.total_channels, self.min_total_channels)
        if self.min_total_channels < 0 or self.max_total_channels < 0:
            raise ValueError("channel limits must be >= 0")
        if self.max_total_channels < self.min_total_channels:
            self.max_total_channels = self.min_total_channels
        return self

    @property
    def filter_active(self) -> bool:
        return self.filtering_enabled and bool(self.filtered_runners)

    def pace_table(self) -> PaceTable:
        return PaceTable.with_overrides(self.good_splits, self.progression_bonus)


class WatcherConfig(BaseModel):
    feed_url: str = PACEMAN_LIVE_URL
    backend_url: str = DEFAULT_BACKEND_URL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    rescore_interval: float = DEFAULT_RESCORE_INTERVAL
    pb_cache_ttl: float = DEFAULT_PB_CACHE_TTL
    http_timeout: float = DEFAULT_HTTP_TIMEOUT

    @field_validator("poll_interval", "rescore_interval", "pb_cache_ttl", "http_timeout")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be > 0")
        return value


_ENV_FIELDS = {
    "PACEWATCH_FEED_URL": "feed_url",
    "PACEWATCH_BACKEND_URL": "backend_url",
    "PACEWATCH_POLL_INTERVAL": "poll_interval",
    "PACEWATCH_RESCORE_INTERVAL": "rescore_interval",
    "PACEWATCH_PB_CACHE_TTL": "pb_cache_ttl",
    "PACEWATCH_HTTP_TIMEOUT": "http_timeout",
}


def load_config(environ: Optional[dict] = None) -> WatcherConfig:
    """Build the service config from environment variables."""
    environ = os.environ if environ is None else environ
    values = {field: environ[key] for key, field in _ENV_FIELDS.items()
              if environ.get(key)}
    return WatcherConfig(**values)
