"""
errors.py — Exceptions raised by PaceWatch.
"""


class PaceWatchError(Exception):
    pass


class FeedError(PaceWatchError):
    """The live-runs feed could not be fetched or parsed. Transient."""


class EventNotFoundError(PaceWatchError):
    """The backend does not know the requested event id."""

    def __init__(self, event_id: str, detail: str = ""):
        self.event_id = event_id
        self.detail = detail
        super().__init__(f"Event {event_id!r} not found" + (f": {detail}" if detail else ""))
