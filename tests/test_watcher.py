"""
test_watcher.py — Poll cycle, failure handling and timers of PaceWatcher.
"""

import asyncio
import time

import httpx
import pytest

from pacewatch.errors import EventNotFoundError, FeedError
from pacewatch.feed import FeedClient
from pacewatch.pb import PbCache, PbEnricher
from pacewatch.settings import Settings, WatcherConfig
from pacewatch.watcher import PaceWatcher


def feed_entry(account, nickname, events=(), hidden=False):
    return {
        "eventList": [{"eventId": e, "rta": igt, "igt": igt} for e, igt in events],
        "user": {"uuid": f"uuid-{account}", "liveAccount": account},
        "nickname": nickname,
        "isHidden": hidden,
        "isCheated": False,
        "lastUpdated": int(time.time() * 1000),
    }


class FakeFeed:
    """Serves a mutable payload through httpx.MockTransport."""

    def __init__(self, payload):
        self.payload = payload
        self.status = 200
        self.requests = 0

    def handler(self, request):
        self.requests += 1
        if request.url.path.startswith("/paceman/event/"):
            return httpx.Response(404, json={"error": "Event not found"})
        return httpx.Response(self.status, json=self.payload)


def make_watcher(fake, settings=None, pbs=None, pb_delay=0, **config):
    lookups = []

    async def lookup(username):
        lookups.append(username)
        if pb_delay:
            await asyncio.sleep(pb_delay)
        return (pbs or {}).get(username)

    published = []

    async def on_update(state):
        published.append([r.live_account for r in state.visible])

    watcher = PaceWatcher(
        config=WatcherConfig(**config),
        settings=settings or Settings(),
        feed=FeedClient(
            feed_url="https://paceman.test/api/ars/liveruns",
            backend_url="https://backend.test",
            client=httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)),
        ),
        enricher=PbEnricher(lookup, PbCache()),
        on_update=on_update,
    )
    return watcher, published, lookups


# ======================================================================
# Poll cycle
# ======================================================================

def test_poll_once_publishes_ranked_channels():
    fake = FakeFeed([
        feed_entry("alice", "Alice", [("rsg.enter_nether", 60000)]),
        feed_entry("bob", "Bob", [("rsg.enter_nether", 50000), ("rsg.enter_bastion", 90000)]),
        feed_entry("carl", "Carl", hidden=True),
    ])
    watcher, published, lookups = make_watcher(fake, pbs={"alice": 600.0})

    assert asyncio.run(watcher.poll_once())
    assert published == [["bob", "alice", "carl"]]
    assert watcher.state.focused == ["bob"]
    assert watcher.state.visible[1].personal_best_seconds == 600.0
    assert sorted(lookups) == ["alice", "bob", "carl"]


def test_unchanged_feed_is_not_republished():
    fake = FakeFeed([feed_entry("alice", "Alice", [("rsg.enter_nether", 60000)])])
    watcher, published, lookups = make_watcher(fake)

    assert asyncio.run(watcher.poll_once())
    assert not asyncio.run(watcher.poll_once())
    assert len(published) == 1
    assert watcher.state.cycles == 2
    # PB served from cache on the second cycle
    assert lookups == ["alice"]


def test_feed_failure_keeps_last_state():
    fake = FakeFeed([feed_entry("alice", "Alice", [("rsg.enter_nether", 60000)])])
    watcher, published, _ = make_watcher(fake)
    asyncio.run(watcher.poll_once())

    fake.status = 503
    with pytest.raises(FeedError):
        asyncio.run(watcher.poll_once())
    assert [r.live_account for r in watcher.state.visible] == ["alice"]
    assert len(published) == 1


def test_unknown_event_propagates():
    watcher, _, _ = make_watcher(FakeFeed([]), settings=Settings(event_id="missing"))
    with pytest.raises(EventNotFoundError):
        asyncio.run(watcher.poll_once())


def test_overlapping_cycle_is_skipped():
    fake = FakeFeed([])
    watcher, _, _ = make_watcher(fake)

    async def scenario():
        async with watcher._cycle_lock:
            return await watcher.poll_once()

    assert asyncio.run(scenario()) is False
    assert fake.requests == 0
    assert watcher.get_status()["skipped_cycles"] == 1


def test_update_settings_refreshes_immediately():
    fake = FakeFeed([
        feed_entry("alice", "Alice", [("rsg.enter_nether", 60000)]),
        feed_entry("bob", "Bob", [("rsg.enter_nether", 70000)]),
    ])
    watcher, published, _ = make_watcher(fake)
    asyncio.run(watcher.update_settings(Settings(filtered_runners="bob")))
    assert published == [["bob"]]


def test_settings_change_during_cycle_is_applied():
    fake = FakeFeed([
        feed_entry("alice", "Alice", [("rsg.enter_nether", 60000)]),
        feed_entry("bob", "Bob", [("rsg.enter_nether", 70000)]),
    ])
    watcher, published, _ = make_watcher(fake, pb_delay=0.05)

    async def scenario():
        in_flight = asyncio.create_task(watcher.poll_once())
        await asyncio.sleep(0.01)
        await watcher.update_settings(Settings(filtered_runners="bob"))
        await in_flight

    asyncio.run(scenario())
    assert published == [["alice", "bob"], ["bob"]]
    assert [r.live_account for r in watcher.state.visible] == ["bob"]
    assert watcher.get_status()["skipped_cycles"] == 0


def test_unknown_event_settings_are_rolled_back():
    fake = FakeFeed([feed_entry("alice", "Alice", [("rsg.enter_nether", 60000)])])
    watcher, _, _ = make_watcher(fake)
    with pytest.raises(EventNotFoundError):
        asyncio.run(watcher.update_settings(Settings(event_id="missing")))
    assert watcher.settings.event_id is None


def test_hidden_pbs_looked_up_only_when_backfilled():
    fake = FakeFeed([
        feed_entry("alice", "Alice", [("rsg.enter_nether", 60000)]),
        feed_entry("h1", "H1", hidden=True),
        feed_entry("h2", "H2", hidden=True),
        feed_entry("h3", "H3", hidden=True),
    ])
    watcher, _, lookups = make_watcher(fake, pbs={"h1": 700.0})

    asyncio.run(watcher.poll_once())
    assert [r.live_account for r in watcher.state.visible] == ["alice", "h1", "h2"]
    assert sorted(lookups) == ["alice", "h1", "h2"]
    assert watcher.state.visible[1].personal_best_seconds == 700.0


# ======================================================================
# Timers
# ======================================================================

def test_start_and_stop_run_poll_and_rescore_loops():
    fake = FakeFeed([feed_entry("alice", "Alice", [("rsg.enter_nether", 60000)])])
    watcher, published, _ = make_watcher(fake, poll_interval=0.05, rescore_interval=0.01)
    rescored = []

    async def on_rescore(state):
        rescored.append(state.visible[0].score.value)

    watcher.on_rescore = on_rescore

    async def scenario():
        await watcher.start()
        await asyncio.sleep(0.2)
        status = watcher.get_status()
        await watcher.aclose()
        return status

    status = asyncio.run(scenario())
    assert status["is_running"]
    assert status["status"] == "Online"
    assert status["cycles"] >= 1
    assert published
    assert rescored
    assert not watcher.is_running
    assert watcher.status == "Stopped"


def test_poll_loop_pauses_on_unknown_event_and_resumes():
    fake = FakeFeed([feed_entry("alice", "Alice", [("rsg.enter_nether", 60000)])])
    watcher, published, _ = make_watcher(fake, settings=Settings(event_id="missing"),
                                         poll_interval=0.01)

    async def scenario():
        await watcher.start()
        await asyncio.sleep(0.1)
        paused = watcher.get_status()
        paused_requests = fake.requests

        await watcher.update_settings(Settings())
        await asyncio.sleep(0.1)
        resumed = watcher.get_status()
        resumed_requests = fake.requests
        await watcher.aclose()
        return paused, paused_requests, resumed, resumed_requests

    paused, paused_requests, resumed, resumed_requests = asyncio.run(scenario())
    assert paused["status"] == "Unknown event"
    assert paused["is_running"]
    assert "missing" in paused["last_error"]
    # No further requests for the missing event while paused
    assert paused_requests == 1

    assert resumed["status"] == "Online"
    assert resumed["last_error"] is None
    assert resumed_requests > paused_requests + 2
    assert published == [["alice"]]
